"""Tests for the ca-workflows command line."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from ca_workflows.lib.ca_directory import CADirectory
from ca_workflows.lib.cert_request import CertificateRequest, RequestState
from ca_workflows.lib.index_store import CertStatus
from ca_workflows.scripts.cli import CA_DIR_ENV, main


@pytest.fixture
def ca_dir(temp_output_dir: Path) -> Path:
    """Root CA created through the CLI."""
    path = temp_output_dir / "acme"
    exit_code = main(
        [
            "--ca-dir",
            str(path),
            "init-ca",
            "--label",
            "acme",
            "--domain",
            "acme.example.com",
            "--key-size",
            "2048",
            "--organization",
            "CLI Org",
        ]
    )
    assert exit_code == 0
    return path


def _run(ca_dir: Path, *args: str) -> int:
    return main(["--ca-dir", str(ca_dir), *args])


class TestInitCA:
    """Tests for init-ca and import-ca."""

    def test_creates_root(self, ca_dir: Path) -> None:
        ca = CADirectory.open(ca_dir)
        assert ca.config.organization == "CLI Org"
        assert ca.config.key_size == 2048
        assert ca.cert_path.exists()

    def test_missing_domain(self, temp_output_dir: Path) -> None:
        assert _run(temp_output_dir / "ca", "init-ca", "--label", "acme") == 1
        assert not (temp_output_dir / "ca").exists()

    def test_existing_location(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "init-ca", "--label", "acme", "--domain", "acme.example.com") == 1

    def test_signing_ca(self, ca_dir: Path, temp_output_dir: Path) -> None:
        child = temp_output_dir / "signing"
        exit_code = _run(
            child,
            "init-ca",
            "--label",
            "signing",
            "--domain",
            "acme.example.com",
            "--parent",
            str(ca_dir),
            "--key-size",
            "2048",
        )

        assert exit_code == 0
        assert CADirectory.open(ca_dir).index.get(1).kind == "ca"

    def test_import_ca(self, ca_dir: Path, temp_output_dir: Path) -> None:
        exit_code = _run(
            temp_output_dir / "imported",
            "import-ca",
            "--cert",
            str(ca_dir / "ca.pem"),
            "--key",
            str(ca_dir / "private" / "ca.key"),
            "--domain",
            "pki.example.com",
            "--label",
            "imported",
        )

        assert exit_code == 0
        assert CADirectory.open(temp_output_dir / "imported").config.label == "imported"

    def test_ca_dir_from_environment(
        self, temp_output_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(CA_DIR_ENV, str(temp_output_dir / "env-ca"))
        exit_code = main(
            ["init-ca", "--label", "env", "--domain", "acme.example.com", "--key-size", "2048"]
        )
        assert exit_code == 0
        assert (temp_output_dir / "env-ca" / "ca.pem").exists()

    def test_file_error(self, temp_output_dir: Path) -> None:
        """Filesystem failures are reported, not raised."""
        with patch(
            "ca_workflows.scripts.cli.CADirectory.initialize",
            side_effect=PermissionError("permission denied"),
        ):
            exit_code = _run(
                temp_output_dir / "ca", "init-ca", "--label", "acme", "--domain", "acme.example.com"
            )
        assert exit_code == 1


class TestUsageErrors:
    """Tests for argparse usage failures (exit code 2)."""

    def test_missing_ca_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CA_DIR_ENV, raising=False)
        with pytest.raises(SystemExit) as exc_info:
            main(["list"])
        assert exc_info.value.code == 2

    def test_unknown_request_type(self, ca_dir: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run(ca_dir, "request", "user", "alice")
        assert exc_info.value.code == 2


class TestRequestAndSign:
    """Tests for request and sign commands."""

    def test_request_then_sign(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "request", "server", "web.example.com") == 0
        assert _run(ca_dir, "sign", "server", "web.example.com") == 0

        ca = CADirectory.open(ca_dir)
        assert ca.index.get(1).name == "web-example-com"
        request = CertificateRequest.load(ca, "server", "web.example.com")
        assert request.state is RequestState.SIGNED

    def test_request_with_sign_flag(self, ca_dir: Path) -> None:
        exit_code = _run(
            ca_dir,
            "request",
            "client",
            "alice@example.com",
            "--email",
            "alice@example.com",
            "--sign",
        )
        assert exit_code == 0
        assert (ca_dir / "client" / "alice-example-com" / "cert.pem").exists()

    def test_client_without_email(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "request", "client", "bob") == 1
        assert not (ca_dir / "client" / "bob").exists()

    def test_duplicate_request(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "request", "server", "web.example.com") == 0
        assert _run(ca_dir, "request", "server", "web.example.com") == 1

    def test_forced_safe_name_and_subject(self, ca_dir: Path) -> None:
        exit_code = _run(
            ca_dir, "request", "server", "web.example.com", "--safe-name", "web", "--country", "US"
        )
        assert exit_code == 0
        request = CertificateRequest.load(CADirectory.open(ca_dir), "server", "web")
        assert request.overrides.country == "US"

    def test_sign_unknown_request(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "sign", "server", "nothing.example.com") == 1

    def test_policy_violation(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "request", "server", "bad host") == 0
        assert _run(ca_dir, "sign", "server", "bad host") == 1
        assert CADirectory.open(ca_dir).index.entries() == []


class TestRevokeAndCRL:
    """Tests for revoke, build-crl and list."""

    def test_revoke_by_serial(self, ca_dir: Path) -> None:
        _run(ca_dir, "request", "server", "web.example.com", "--sign")
        assert _run(ca_dir, "revoke", "--serial", "01") == 0
        assert CADirectory.open(ca_dir).index.get(1).status is CertStatus.REVOKED

    def test_revoke_by_name_and_build_crl(self, ca_dir: Path) -> None:
        _run(ca_dir, "request", "server", "web.example.com", "--sign")
        exit_code = _run(
            ca_dir, "revoke", "--type", "server", "--name", "web.example.com", "--build-crl"
        )
        assert exit_code == 0
        assert (ca_dir / "crl" / "acme.crl").exists()

    def test_revoke_twice(self, ca_dir: Path) -> None:
        _run(ca_dir, "request", "server", "web.example.com", "--sign")
        assert _run(ca_dir, "revoke", "--serial", "1") == 0
        assert _run(ca_dir, "revoke", "--serial", "1") == 1

    def test_revoke_needs_target(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "revoke") == 1

    def test_revoke_bad_serial(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "revoke", "--serial", "zz") == 1

    def test_build_crl(self, ca_dir: Path) -> None:
        assert _run(ca_dir, "build-crl") == 0
        assert _run(ca_dir, "build-crl") == 0
        assert (ca_dir / "crlnumber").read_text() == "03\n"

    def test_list(self, ca_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(ca_dir, "request", "server", "web.example.com", "--sign")
        capsys.readouterr()

        assert _run(ca_dir, "list") == 0

        fields = capsys.readouterr().out.strip().split("\t")
        assert fields[:3] == ["01", "valid", "server"]
        assert fields[-1].endswith("/CN=web.example.com")


class TestPublishCRL:
    """Tests for publish-crl with a mocked S3 client."""

    @pytest.fixture
    def mock_s3_client(self) -> Generator[MagicMock]:
        with patch("ca_workflows.scripts.cli.S3Client") as mock_cls:
            client = MagicMock()
            client.publish_crl.return_value = "v1"
            mock_cls.return_value = client
            yield client

    def test_publish(self, ca_dir: Path, mock_s3_client: MagicMock) -> None:
        _run(ca_dir, "build-crl")

        assert _run(ca_dir, "publish-crl", "--bucket", "crl-bucket") == 0

        mock_s3_client.publish_crl.assert_called_once_with(
            "crl-bucket", "acme", (ca_dir / "crl" / "acme.crl").read_bytes()
        )
        mock_s3_client.publish_ca_certificate.assert_called_once_with(
            "crl-bucket", "acme", (ca_dir / "ca.pem").read_bytes()
        )

    def test_publish_without_crl(self, ca_dir: Path, mock_s3_client: MagicMock) -> None:
        assert _run(ca_dir, "publish-crl", "--bucket", "crl-bucket") == 1
        mock_s3_client.publish_crl.assert_not_called()

    def test_publish_s3_error(self, ca_dir: Path, mock_s3_client: MagicMock) -> None:
        _run(ca_dir, "build-crl")
        mock_s3_client.publish_crl.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "PutObject"
        )
        assert _run(ca_dir, "publish-crl", "--bucket", "crl-bucket") == 1
