#!/usr/bin/env python3
"""
Upload Manager for Hope Remote Log
Compresses hourly bucket files and uploads them to S3 with retry logic

Objects land under Hive-style partitions derived from the bucket filename:
    logs/year=YYYY/month=MM/day=DD/hour=HH/<bucket-key>_<suffix>.log.gz
The random suffix keeps two cycles in the same hour from overwriting each
other's object for the same bucket.
"""

import os
import re
import gzip
import time
import random
import shutil
import string
import logging
from pathlib import Path

import boto3
import boto3.session
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, BotoCoreError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = 'logs'
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
KEY_SUFFIX_LENGTH = 6
KEY_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
COMPRESS_CHUNK_SIZE = 1024**2  # 1 MB streaming chunks

CONTENT_TYPE = 'application/gzip'
CONTENT_ENCODING = 'gzip'

_BUCKET_FILENAME_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})-(\d{2})\.log$')

_PERMANENT_ERROR_CODES = {
    'InvalidAccessKeyId': 'Invalid AWS credentials',
    'SignatureDoesNotMatch': 'Invalid AWS credentials',
    'NoSuchBucket': 'Bucket does not exist',
    'AccessDenied': 'Access denied',
    'EntityTooLarge': 'File size exceeds S3 limits',
}


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


class BucketNameError(ValueError):
    """
    Raised when a bucket filename does not match YYYY-MM-DD-HH.log.

    The storage partition cannot be derived, so the file is quarantined
    instead of uploaded.
    """
    pass


class UploadError(Exception):
    """
    Raised when upload fails after all retries.

    Attributes:
        retry_attempts (int): Retries spent after the first attempt
    """

    def __init__(self, message: str, retry_attempts: int = 0):
        super().__init__(message)
        self.retry_attempts = retry_attempts


class PermanentUploadError(UploadError):
    """
    Raised when upload fails due to permanent error (won't resolve by retrying).

    Examples:
    - Invalid AWS credentials
    - Bucket doesn't exist
    - IAM permissions denied
    - Compressed file disappeared before upload
    """
    pass


class UploadManager:
    """
    Compresses bucket files and uploads them to S3.

    Features:
    - Streaming gzip compression
    - Partitioned S3 keys with collision-avoiding random suffix
    - Bounded retry with linearly growing delay (attempt * base delay)
    - Permanent error detection (credentials, bucket, IAM)

    Example:
        >>> uploader = UploadManager(bucket='hope-remote-logs', region='us-east-1')
        >>> key = uploader.upload_bucket_file(Path('/data/logs/processing/2025-09-04-05.log'))

    Attributes:
        bucket (str): S3 bucket name
        region (str): AWS region
        key_prefix (str): Top-level S3 prefix
        max_retries (int): Retries after the first attempt
        retry_base_delay (float): Seconds multiplied by the retry number
        s3_client: Boto3 S3 client
    """

    def __init__(self, bucket: str, region: str, key_prefix: str = DEFAULT_KEY_PREFIX,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
                 profile_name: str = None):
        """
        Initialize upload manager.

        Args:
            bucket: S3 bucket name
            region: AWS region (e.g., 'ap-southeast-1', 'cn-north-1')
            key_prefix: Top-level S3 prefix (default: 'logs')
            max_retries: Retries after the first attempt (default: 3)
            retry_base_delay: Base retry delay in seconds (default: 1)
            profile_name: AWS profile name (default: None uses default chain)
        """
        self.bucket = bucket
        self.region = region
        self.key_prefix = key_prefix.strip('/')
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

        # Check for LocalStack (testing)
        endpoint_url = os.getenv('AWS_ENDPOINT_URL')

        client_kwargs = {'region_name': region}

        if profile_name:
            session = boto3.session.Session(profile_name=profile_name)
            logger.info(f"Using AWS profile: {profile_name}")
        else:
            session = boto3.session.Session()

        if endpoint_url:
            logger.info(f"Using custom endpoint: {endpoint_url}")
            client_kwargs['endpoint_url'] = endpoint_url
            client_kwargs['aws_access_key_id'] = os.getenv('AWS_ACCESS_KEY_ID', 'test')
            client_kwargs['aws_secret_access_key'] = os.getenv('AWS_SECRET_ACCESS_KEY', 'test')
        elif region.startswith('cn-'):
            # AWS China uses different endpoints
            logger.info(f"Using AWS China endpoint for region: {region}")
            client_kwargs['endpoint_url'] = f'https://s3.{region}.amazonaws.com.cn'

        self.s3_client = session.client('s3', **client_kwargs)

        logger.info(f"Initialized for bucket: {bucket}")
        logger.info(f"Key prefix: {self.key_prefix}")
        logger.info(f"Max retries: {max_retries}")

    def build_s3_key(self, filename: str) -> str:
        """
        Build the partitioned S3 key for a bucket file.

        Args:
            filename: Bucket filename, e.g. '2025-09-04-05.log'

        Returns:
            str: e.g. 'logs/year=2025/month=09/day=04/hour=05/2025-09-04-05_k3x9a1.log.gz'

        Raises:
            BucketNameError: If the filename is not YYYY-MM-DD-HH.log
        """
        match = _BUCKET_FILENAME_RE.match(filename)
        if not match:
            raise BucketNameError(f"Invalid filename format: {filename}")

        year, month, day, hour = match.groups()
        suffix = ''.join(random.choices(KEY_SUFFIX_ALPHABET, k=KEY_SUFFIX_LENGTH))
        bucket_key = filename[:-len('.log')]

        return (f"{self.key_prefix}/year={year}/month={month}/day={day}/hour={hour}/"
                f"{bucket_key}_{suffix}.log.gz")

    def compress_file(self, source: Path, destination: Path):
        """
        Gzip a file without loading it into memory.

        Raises:
            OSError: On read/write failure
        """
        with open(source, 'rb') as f_in, gzip.open(destination, 'wb') as f_out:
            shutil.copyfileobj(f_in, f_out, COMPRESS_CHUNK_SIZE)

    def upload_file(self, local_path: Path, s3_key: str) -> int:
        """
        Upload a compressed file with retry logic and error classification.

        Args:
            local_path: Path to the .gz file
            s3_key: Destination key (reused by every attempt)

        Returns:
            int: Number of retries spent before success

        Raises:
            PermanentUploadError: For errors that won't resolve by retrying
            UploadError: After max_retries retries have failed
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self._calculate_backoff(attempt)
                logger.info(f"Retrying {local_path.name} in {delay} seconds... "
                            f"({attempt}/{self.max_retries})")
                time.sleep(delay)

            try:
                self.s3_client.upload_file(
                    str(local_path), self.bucket, s3_key,
                    ExtraArgs={'ContentType': CONTENT_TYPE,
                               'ContentEncoding': CONTENT_ENCODING}
                )
                logger.info(f"SUCCESS: {local_path.name} -> s3://{self.bucket}/{s3_key}")
                return attempt

            except ClientError as e:
                self._raise_if_permanent(e, e, attempt)
                logger.warning(f"Upload failed (attempt {attempt + 1}): {_error_code(e)} - {e}")
                last_error = e

            except FileNotFoundError as e:
                logger.error(f"File disappeared during upload: {local_path.name}")
                raise PermanentUploadError(f"File deleted during upload: {local_path}",
                                           attempt) from e

            except S3UploadFailedError as e:
                # Transfer manager wraps service errors, the ClientError is the context
                cause = e.__cause__ or e.__context__
                if isinstance(cause, ClientError):
                    self._raise_if_permanent(cause, e, attempt)
                logger.warning(f"Upload failed (attempt {attempt + 1}): {e}")
                last_error = e

            except BotoCoreError as e:
                # Network/connection errors (temporary)
                logger.warning(f"Network error (attempt {attempt + 1}): {e}")
                last_error = e

        logger.error(f"Max retries exceeded for {local_path.name}")
        raise UploadError(f"Upload failed after {self.max_retries} retries: {last_error}",
                          self.max_retries)

    def _raise_if_permanent(self, client_error: ClientError, raised: Exception, attempt: int):
        """
        Raise PermanentUploadError if the service error code will not resolve by retrying.

        Args:
            client_error: Service error carrying the error code
            raised: Exception caught by the retry loop (chained as the cause)
            attempt: Retries spent so far
        """
        error_code = _error_code(client_error)
        if error_code not in _PERMANENT_ERROR_CODES:
            return

        reason = _PERMANENT_ERROR_CODES[error_code]
        error_message = client_error.response.get('Error', {}).get('Message', str(client_error))
        logger.error(f"PERMANENT ERROR: {reason} ({error_code}) - {error_message}")
        raise PermanentUploadError(f"{reason}: {error_message}", attempt) from raised

    def upload_bucket_file(self, source: Path) -> str:
        """
        Compress, upload and delete one bucket file from the processing area.

        The compressed artifact is always removed; the original is deleted
        only after a successful upload.

        Args:
            source: Uncompressed bucket file

        Returns:
            str: S3 key of the uploaded object

        Raises:
            BucketNameError: Filename does not encode a bucket hour
            UploadError: Upload failed permanently or after all retries
            OSError: Compression or cleanup failed
        """
        source = Path(source)
        s3_key = self.build_s3_key(source.name)
        compressed = source.with_name(source.name + '.gz')

        try:
            self.compress_file(source, compressed)
            self.upload_file(compressed, s3_key)
        finally:
            try:
                compressed.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove {compressed.name}: {e}")

        source.unlink()
        return s3_key

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate retry delay.

        Uses formula: attempt * retry_base_delay
        Sequence with base 1s: 1, 2, 3...

        Args:
            attempt: Retry number (1-based)

        Returns:
            float: Delay in seconds
        """
        return attempt * self.retry_base_delay
