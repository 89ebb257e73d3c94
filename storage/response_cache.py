"""DynamoDB-backed cache for encoded endpoint responses."""
import logging
import time
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Key-value store of Lambda proxy responses with a TTL.

    Items carry a ``ttl`` epoch attribute so DynamoDB expires them; since
    expiry is lazy, ``match`` also checks it.
    """

    def __init__(self, table_name: str, ttl_seconds: int = 300, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            ttl_seconds: Lifetime of stored responses
            region_name: AWS region, defaults to the environment's
        """
        self.table_name = table_name
        self.ttl_seconds = ttl_seconds
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized ResponseCache for table: {table_name}")

    def match(self, cache_key: str) -> Optional[Dict[str, Any]]:
        """
        Look up a cached response.

        Backend errors are logged and reported as a miss.

        Args:
            cache_key: Deterministic request key

        Returns:
            Response dict with statusCode, headers and body, or None
        """
        try:
            result = self.table.get_item(Key={'cache_key': cache_key})
        except ClientError as e:
            logger.warning(f"Cache lookup failed for {cache_key}: {e}")
            return None

        item = result.get('Item')
        if not item:
            return None
        if int(item.get('ttl', 0)) <= int(time.time()):
            logger.debug(f"Cache entry expired for {cache_key}")
            return None
        return self._item_to_response(item)

    def put(self, cache_key: str, response: Dict[str, Any]) -> bool:
        """
        Store a response under a key.

        Args:
            cache_key: Deterministic request key
            response: Response dict with statusCode, headers and body

        Returns:
            True if stored, False if the backend rejected the write
        """
        item = self._response_to_item(cache_key, response)
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.warning(f"Cache store failed for {cache_key}: {e}")
            return False
        return True

    def _response_to_item(self, cache_key: str, response: Dict[str, Any]) -> dict:
        return {
            'cache_key': cache_key,
            'status_code': response['statusCode'],
            'headers': dict(response.get('headers') or {}),
            'body': response.get('body', ''),
            'ttl': int(time.time()) + self.ttl_seconds,
        }

    def _item_to_response(self, item: dict) -> Optional[Dict[str, Any]]:
        try:
            return {
                'statusCode': int(item['status_code']),
                'headers': {key: str(value) for key, value in item.get('headers', {}).items()},
                'body': item['body'],
            }
        except (KeyError, ValueError) as e:
            logger.warning(f"Discarding malformed cache item: {e}")
            return None
