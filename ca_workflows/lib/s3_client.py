"""S3 client for publishing CRLs and CA certificates."""

import boto3

CRL_CONTENT_TYPE = "application/pkix-crl"
PEM_CONTENT_TYPE = "application/x-pem-file"


class S3Client:
    """S3 client serving the CRL distribution point and CA certificate."""

    def __init__(self, region: str = "eu-west-2") -> None:
        """Initialize S3 client.

        Args:
            region: AWS region for S3 client
        """
        self.client = boto3.client("s3", region_name=region)

    def publish(self, bucket_name: str, key: str, body: bytes, content_type: str) -> str:
        """Upload an object to S3.

        Returns:
            S3 version ID if versioning enabled, empty string otherwise

        Raises:
            ClientError: If upload fails
        """
        response = self.client.put_object(
            Bucket=bucket_name,
            Key=key,
            Body=body,
            ContentType=content_type,
        )
        return response.get("VersionId", "")

    def publish_crl(self, bucket_name: str, label: str, crl_der: bytes) -> str:
        """Upload DER CRL to ``crl/<label>.crl``, the path embedded in issued certificates.

        Args:
            bucket_name: S3 bucket behind the CA domain
            label: CA label
            crl_der: DER-encoded CRL

        Returns:
            S3 version ID if versioning enabled, empty string otherwise
        """
        return self.publish(bucket_name, f"crl/{label}.crl", crl_der, CRL_CONTENT_TYPE)

    def publish_ca_certificate(self, bucket_name: str, label: str, cert_pem: bytes) -> str:
        """Upload CA certificate to ``ca/<label>.pem``."""
        return self.publish(bucket_name, f"ca/{label}.pem", cert_pem, PEM_CONTENT_TYPE)

    def fetch(self, bucket_name: str, key: str) -> bytes:
        """Download an object from S3.

        Raises:
            ClientError: If download fails
        """
        response = self.client.get_object(Bucket=bucket_name, Key=key)
        return response["Body"].read()
