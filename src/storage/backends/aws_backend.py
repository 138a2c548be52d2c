"""
AWS S3 replica store implementation.

Each region is a versioned S3 bucket. Replication provenance (replica flag,
origin region, origin timestamp, source version id) travels as user
metadata on the object, so a replica read back from the peer bucket reports
the version id it had in its origin region.

Delete markers cannot carry metadata. Each tombstone written through this
store leaves a side record under ``TOMBSTONE_PREFIX`` naming the marker
version it describes and holding the tombstone's provenance.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
    ConnectTimeoutError
)

from src.errors import ObjectNotFound, ReplicationPermanentError, ReplicationTransientError
from src.models import Region, ReplicatedObject
from .base import ReplicaStore, parse_provenance

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {'NoSuchKey', 'NoSuchVersion', '404', 'NotFound'}
TRANSIENT_CODES = {
    'SlowDown', 'Throttling', 'ThrottlingException', 'RequestTimeout',
    'RequestTimeoutException', 'InternalError', 'ServiceUnavailable', '500', '503'
}
CONNECTION_ERRORS = (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError, ConnectTimeoutError)

TOMBSTONE_PREFIX = '.replication/tombstones/'
META_MARKER_VERSION = 'marker-version-id'


class S3ReplicaStore(ReplicaStore):
    """Replica store backed by a versioned S3 bucket"""

    def __init__(self, region: Region, client=None, endpoint_url: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(region, clock=clock)
        if not region.bucket:
            raise ValueError(f"Region {region.region_id} has no bucket configured")
        self.bucket = region.bucket
        # Retries are owned by the replication engine, so botocore makes a single attempt
        self.s3 = client or boto3.client(
            's3',
            region_name=region.region_id,
            endpoint_url=endpoint_url,
            config=Config(
                signature_version='s3v4',
                retries={'max_attempts': 1, 'mode': 'standard'}
            )
        )
        logger.info(f"S3 replica store for {region.region_id} using bucket {self.bucket}")

    def _translate(self, error: Exception, key: str) -> Exception:
        """Map a botocore error onto the control plane error taxonomy"""
        if isinstance(error, CONNECTION_ERRORS):
            return ReplicationTransientError(f"S3 {self.region_id} unreachable for {key}: {error}")
        if isinstance(error, ClientError):
            code = str(error.response.get('Error', {}).get('Code', ''))
            if code in NOT_FOUND_CODES:
                return ObjectNotFound(key, self.region_id)
            if code in TRANSIENT_CODES:
                return ReplicationTransientError(f"S3 {self.region_id} {code} for {key}")
            return ReplicationPermanentError(f"S3 {self.region_id} rejected {key}: {code}")
        return error

    async def _call(self, key: str, operation, **kwargs):
        try:
            return await self._run_blocking(operation, **kwargs)
        except (ClientError, *CONNECTION_ERRORS) as e:
            raise self._translate(e, key) from e

    def _to_object(self, key: str, version_id: str, metadata: Dict[str, str],
                   payload: bytes, storage_class: str, tombstone: bool = False,
                   last_modified=None, provenance_known: bool = True) -> ReplicatedObject:
        provenance = parse_provenance(metadata, self.region_id)
        origin_timestamp = provenance['origin_timestamp']
        if last_modified is not None and not metadata:
            origin_timestamp = last_modified.timestamp()
        return ReplicatedObject(
            key=key,
            version_id=provenance['source_version'] or version_id,
            payload=payload,
            metadata=metadata,
            origin_region=provenance['origin_region'],
            is_replica=provenance['is_replica'],
            tombstone=tombstone,
            origin_timestamp=origin_timestamp,
            storage_class=storage_class,
            provenance_known=provenance_known
        )

    async def _put_object(self, key, payload, metadata, storage_class):
        response = await self._call(
            key,
            self.s3.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=payload,
            Metadata=metadata,
            StorageClass=storage_class
        )
        return self._to_object(key, response.get('VersionId'), metadata, payload, storage_class)

    def _tombstone_key(self, key: str) -> str:
        return f"{TOMBSTONE_PREFIX}{key}"

    async def _delete_object(self, key, metadata):
        response = await self._call(key, self.s3.delete_object, Bucket=self.bucket, Key=key)
        marker_version = response.get('VersionId')
        await self._call(
            key,
            self.s3.put_object,
            Bucket=self.bucket,
            Key=self._tombstone_key(key),
            Body=b"",
            Metadata={**metadata, META_MARKER_VERSION: marker_version or ''}
        )
        return self._to_object(
            key, marker_version, metadata, b"", self.region.storage_class, tombstone=True
        )

    async def _tombstone_metadata(self, key: str, marker_version: str) -> Dict[str, str]:
        """Provenance recorded for a delete marker, or {} if no record matches it"""
        try:
            record = await self._call(
                key, self.s3.head_object, Bucket=self.bucket, Key=self._tombstone_key(key)
            )
        except ObjectNotFound:
            return {}
        metadata = dict(record.get('Metadata', {}))
        if metadata.pop(META_MARKER_VERSION, None) != marker_version:
            return {}
        return metadata

    async def get(self, key: str) -> ReplicatedObject:
        response = await self._call(key, self.s3.get_object, Bucket=self.bucket, Key=key)
        payload = await self._run_blocking(response['Body'].read)
        return self._to_object(
            key,
            response.get('VersionId'),
            response.get('Metadata', {}),
            payload,
            response.get('StorageClass', 'STANDARD')
        )

    async def head(self, key: str) -> Optional[ReplicatedObject]:
        response = await self._call(
            key, self.s3.list_object_versions, Bucket=self.bucket, Prefix=key
        )
        for marker in response.get('DeleteMarkers', []):
            if marker['Key'] == key and marker.get('IsLatest'):
                metadata = await self._tombstone_metadata(key, marker['VersionId'])
                if not metadata:
                    logger.warning(
                        f"Delete marker {marker['VersionId']} on {key} in {self.region_id} has no provenance record"
                    )
                return self._to_object(
                    key, marker['VersionId'], metadata, b"", self.region.storage_class,
                    tombstone=True, last_modified=marker.get('LastModified'),
                    provenance_known=bool(metadata)
                )
        for version in response.get('Versions', []):
            if version['Key'] == key and version.get('IsLatest'):
                head = await self._call(
                    key, self.s3.head_object,
                    Bucket=self.bucket, Key=key, VersionId=version['VersionId']
                )
                return self._to_object(
                    key, version['VersionId'], head.get('Metadata', {}), b"",
                    version.get('StorageClass', 'STANDARD'),
                    last_modified=version.get('LastModified')
                )
        return None

    async def list(self, prefix: str = "") -> List[str]:
        keys = []
        kwargs = {'Bucket': self.bucket, 'Prefix': prefix}
        while True:
            response = await self._call(prefix, self.s3.list_objects_v2, **kwargs)
            keys.extend(
                obj['Key'] for obj in response.get('Contents', [])
                if not obj['Key'].startswith(TOMBSTONE_PREFIX)
            )
            if not response.get('IsTruncated'):
                return keys
            kwargs['ContinuationToken'] = response['NextContinuationToken']
