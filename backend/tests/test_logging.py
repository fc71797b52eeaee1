"""Structured logging tests."""

from __future__ import annotations

import io
import logging

import orjson

from kontecst.core.logging import JsonFormatter, bind


def test_bound_context_lands_in_json_payload() -> None:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("kontecst.test.bound")
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.INFO)

    bind(logger, repository_id="repo_1").info("Sync %s", "succeeded", extra={"ctx_job_id": "job_9"})

    payload = orjson.loads(stream.getvalue().strip())
    assert payload["msg"] == "Sync succeeded"
    assert payload["level"] == "INFO"
    assert payload["repository_id"] == "repo_1"
    assert payload["job_id"] == "job_9"
