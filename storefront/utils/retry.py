# storefront/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import requests
import redis


def http_retry():
    """
    Retries only when the request may never have reached the catalog
    (connection refused, timeout). 4xx/5xx answers are returned to the
    caller, which decides what they mean (404 = missing item).
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    )


def redis_retry():
    """
    Retries on a dropped connection only. Use it on idempotent commands;
    HINCRBY and friends may have been applied before the connection broke.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.ConnectionError),
    )
