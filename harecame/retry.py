"""
Exponential backoff for calls to external services.
"""
import time


def retry_with_backoff(operation, max_retries=3, base_delay=1.0, max_delay=10.0, backoff_factor=2.0,
                       on_retry=None, retry_on=(Exception,), sleep=time.sleep):
    """
    Call operation() once, then retry it up to max_retries times.

    After failed attempt n the wait is base_delay * backoff_factor ** (n - 1),
    capped at max_delay. on_retry(attempt, error) is called after every
    failure. Exceptions not listed in retry_on propagate immediately; when
    the retries run out the final error is re-raised.
    """
    if max_retries < 0:
        raise ValueError('max_retries cannot be negative')

    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except retry_on as e:
            if on_retry is not None:
                on_retry(attempt, e)
            if attempt == attempts:
                raise
            sleep(min(base_delay * backoff_factor ** (attempt - 1), max_delay))
