#!/usr/bin/env python3
"""
CloudWatch Manager for Hope Remote Log
Publishes batch cycle metrics
"""

import os
import boto3
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

CLOUDWATCH_NAMESPACE = 'HopeRemoteLog/Batch'
METRIC_BYTES_UPLOADED = 'BytesUploaded'
METRIC_FILE_COUNT = 'FilesUploaded'
METRIC_FAILURE_COUNT = 'FilesQuarantined'
METRIC_DISK_USAGE = 'DiskUsagePercent'


class CloudWatchManager:
    """
    Accumulates per-cycle upload counters and publishes them to CloudWatch.

    Metrics Published (dimension Service=<service_name>):
    - HopeRemoteLog/Batch/BytesUploaded
    - HopeRemoteLog/Batch/FilesUploaded
    - HopeRemoteLog/Batch/FilesQuarantined
    - HopeRemoteLog/Batch/DiskUsagePercent

    Publishing never raises: a metrics outage must not fail a batch cycle.

    Example:
        >>> cw = CloudWatchManager('ap-southeast-1', 'hope-remote-log')
        >>> cw.record_upload_success(file_size=1024*1024)
        >>> cw.record_upload_failure()
        >>> cw.publish_metrics(disk_usage_percent=42.0)
    """

    def __init__(self, region: str, service_name: str, enabled: bool = True,
                 profile_name: str = None):
        self.region = region
        self.service_name = service_name
        self.enabled = enabled
        self.cw_client = None
        self.bytes_uploaded = 0
        self.files_uploaded = 0
        self.files_failed = 0

        if not self.enabled:
            logger.info("CloudWatch disabled (enabled=False)")
            return

        endpoint_url = os.getenv('AWS_ENDPOINT_URL')
        if endpoint_url:
            self.cw_client = boto3.client(
                'cloudwatch',
                region_name=region,
                endpoint_url=endpoint_url,
                aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID', 'test'),
                aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY', 'test'),
            )
            logger.info(f"CloudWatch in TEST mode (endpoint: {endpoint_url})")
        elif profile_name:
            session = boto3.Session(profile_name=profile_name)
            self.cw_client = session.client('cloudwatch', region_name=region)
            logger.info(f"CloudWatch initialized with profile '{profile_name}' for region: {region}")
        else:
            self.cw_client = boto3.client('cloudwatch', region_name=region)
            logger.info(f"CloudWatch initialized for region: {region}")

    def record_upload_success(self, file_size: int):
        """Record successful bucket upload."""
        self.bytes_uploaded += file_size
        self.files_uploaded += 1
        logger.debug(f"Recorded upload: {file_size} bytes")

    def record_upload_failure(self):
        """Record quarantined bucket file."""
        self.files_failed += 1
        logger.debug("Recorded upload failure")

    def _metric(self, name: str, value: float, unit: str, timestamp: datetime) -> dict:
        return {
            'MetricName': name,
            'Value': value,
            'Unit': unit,
            'Timestamp': timestamp,
            'Dimensions': [{'Name': 'Service', 'Value': self.service_name}],
        }

    def publish_metrics(self, disk_usage_percent: Optional[float] = None):
        """Publish accumulated metrics to CloudWatch and reset accumulators."""
        if not self.enabled:
            logger.debug("CloudWatch disabled, skipping publish")
            return

        if self.cw_client is None:
            logger.error("CloudWatch client not initialized, cannot publish metrics")
            return

        timestamp = datetime.now(timezone.utc)
        metrics = [
            self._metric(METRIC_BYTES_UPLOADED, self.bytes_uploaded, 'Bytes', timestamp),
            self._metric(METRIC_FILE_COUNT, self.files_uploaded, 'Count', timestamp),
            self._metric(METRIC_FAILURE_COUNT, self.files_failed, 'Count', timestamp),
        ]
        if disk_usage_percent is not None:
            metrics.append(self._metric(METRIC_DISK_USAGE, disk_usage_percent, 'Percent', timestamp))

        try:
            self.cw_client.put_metric_data(Namespace=CLOUDWATCH_NAMESPACE, MetricData=metrics)
            logger.info(f"Published {len(metrics)} metrics to CloudWatch")
        except Exception as e:
            logger.error(f"Failed to publish CloudWatch metrics: {e}")
            return

        self.bytes_uploaded = 0
        self.files_uploaded = 0
        self.files_failed = 0
