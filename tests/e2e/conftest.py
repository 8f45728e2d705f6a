# tests/e2e/conftest.py
"""
Fixtures for E2E tests (REAL AWS)
These tests use actual AWS services and only run when TEST_BUCKET is set
"""

import os

import boto3
import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: end-to-end test")
    config.addinivalue_line("markers", "real_aws: makes real AWS API calls")


def pytest_collection_modifyitems(config, items):
    if os.getenv("TEST_BUCKET"):
        return
    skip_real = pytest.mark.skip(reason="TEST_BUCKET not set")
    for item in items:
        if "real_aws" in item.keywords:
            item.add_marker(skip_real)


@pytest.fixture(scope="session")
def aws_config():
    """
    Real AWS configuration
    Uses environment variables for CI/CD
    """
    return {
        "profile": os.getenv("AWS_PROFILE", None),
        "bucket": os.getenv("TEST_BUCKET"),
        "region": os.getenv("AWS_REGION", "us-east-1"),
        "key_prefix": "e2e-test",
    }


@pytest.fixture
def real_s3_client(aws_config):
    """
    REAL S3 client - connects to actual AWS
    NO MOCKING - this makes real API calls
    """
    if aws_config["profile"]:
        session = boto3.Session(
            profile_name=aws_config["profile"], region_name=aws_config["region"]
        )
    else:
        # CI/CD: Use OIDC credentials (no profile)
        session = boto3.Session(region_name=aws_config["region"])

    if aws_config["region"].startswith("cn-"):
        return session.client(
            "s3", endpoint_url=f"https://s3.{aws_config['region']}.amazonaws.com.cn"
        )
    return session.client("s3")


@pytest.fixture
def real_upload_manager(aws_config):
    """Upload manager connected to REAL AWS S3"""
    from hope_remote_log.upload_manager import UploadManager

    return UploadManager(
        bucket=aws_config["bucket"],
        region=aws_config["region"],
        key_prefix=aws_config["key_prefix"],
        profile_name=aws_config["profile"],  # Will be None in CI
    )


@pytest.fixture
def s3_cleanup(real_s3_client, aws_config):
    """
    Auto-cleanup S3 objects after test completes
    Usage: s3_cleanup('path/to/object.log.gz')
    """
    objects_to_delete = []

    def track(key):
        """Track S3 key for deletion"""
        objects_to_delete.append(key)
        return key

    yield track

    for key in objects_to_delete:
        try:
            real_s3_client.delete_object(Bucket=aws_config["bucket"], Key=key)
            print(f"Cleaned up s3://{aws_config['bucket']}/{key}")
        except Exception as e:
            print(f"Cleanup failed for {key}: {e}")
