"""Thin DynamoDB layer over the portal's prefixed tables.

Tables are named `{DYNAMODB_TABLE_PREFIX}-{table}` (e.g.
`membership-prod-payments`). Items come back as plain Python values: numbers
are converted from Decimal to int (or float when fractional). Conditional
writes report a failed condition as a return value rather than an exception,
so callers can treat "already in that state" as an ordinary outcome.
"""

from collections.abc import Callable, Iterator
from decimal import Decimal
from functools import lru_cache
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from portal_shared.config import get_settings

BATCH_GET_LIMIT = 100
CONDITION_FAILED = "ConditionalCheckFailedException"


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _condition_failed(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITION_FAILED


class DynamoDBService:
    """Reads and conditional writes against the portal tables."""

    def __init__(
        self,
        name_prefix: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self.name_prefix = name_prefix or settings.table_prefix
        self._resource = boto3.resource(
            "dynamodb", endpoint_url=endpoint_url or settings.dynamodb_endpoint_url
        )

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def _table(self, table: str) -> Any:
        return self._resource.Table(self.table_name(table))

    def get_item(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        item = self._table(table).get_item(Key=key).get("Item")
        return _plain(item) if item else None

    def put_item(
        self,
        table: str,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> bool:
        """Write an item; False when `condition_expression` does not hold."""
        kwargs: dict[str, Any] = {"Item": item}
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            self._table(table).put_item(**kwargs)
        except ClientError as e:
            if _condition_failed(e):
                return False
            raise
        return True

    def update_item(
        self,
        table: str,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_values: dict[str, Any],
        expression_attribute_names: dict[str, str] | None = None,
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        """Apply an update expression.

        Returns:
            The item as it is after the update, or None if the condition
            failed (nothing was written).
        """
        kwargs: dict[str, Any] = {
            "Key": key,
            "UpdateExpression": update_expression,
            "ExpressionAttributeValues": expression_attribute_values,
            "ReturnValues": "ALL_NEW",
        }
        if expression_attribute_names:
            kwargs["ExpressionAttributeNames"] = expression_attribute_names
        if condition_expression:
            kwargs["ConditionExpression"] = condition_expression
        try:
            response = self._table(table).update_item(**kwargs)
        except ClientError as e:
            if _condition_failed(e):
                return None
            raise
        return _plain(response.get("Attributes"))

    @staticmethod
    def _pages(operation: Callable[..., dict[str, Any]], **kwargs: Any) -> Iterator[dict[str, Any]]:
        while True:
            response = operation(**kwargs)
            for item in response.get("Items", []):
                yield _plain(item)
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def query_index(
        self,
        table: str,
        index_name: str,
        key_name: str,
        key_value: str,
    ) -> list[dict[str, Any]]:
        """All items of a GSI partition."""
        return list(
            self._pages(
                self._table(table).query,
                IndexName=index_name,
                KeyConditionExpression=Key(key_name).eq(key_value),
            )
        )

    def scan(self, table: str, filter_expression: Any | None = None) -> list[dict[str, Any]]:
        """Every item of a table; admin listings and the reconciliation sweep only."""
        kwargs: dict[str, Any] = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        return list(self._pages(self._table(table).scan, **kwargs))

    def batch_get(self, table: str, keys: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Items for the given keys, in no particular order; missing keys are skipped."""
        name = self.table_name(table)
        items: list[dict[str, Any]] = []
        for start in range(0, len(keys), BATCH_GET_LIMIT):
            request: dict[str, Any] = {name: {"Keys": keys[start : start + BATCH_GET_LIMIT]}}
            while request:
                response = self._resource.batch_get_item(RequestItems=request)
                items.extend(_plain(i) for i in response.get("Responses", {}).get(name, []))
                request = response.get("UnprocessedKeys") or {}
        return items


@lru_cache(maxsize=1)
def get_dynamodb_service() -> DynamoDBService:
    """Process-wide DynamoDBService; boto3 resources are built once."""
    return DynamoDBService()


def reset_dynamodb_service() -> None:
    """Drop the cached service so the next call builds one inside mock_aws."""
    get_dynamodb_service.cache_clear()
