"""Best-effort removal of stored files and messages after a conversation is deleted."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from ..repository import ConversationRepository, MessageRecord
from .storage_paths import extract_storage_path, is_user_path

logger = logging.getLogger(__name__)


class BlobDeleter(Protocol):
    def delete_blob(self, blob_name: str) -> bool:
        ...


@dataclass
class CleanupReport:
    messages_deleted: int = 0
    files_deleted: int = 0
    files_missing: int = 0
    failures: int = 0


def _message_urls(message: MessageRecord) -> list[str]:
    urls: list[str] = []
    for attachment in message.get("attachments") or []:
        if isinstance(attachment, dict):
            url = attachment.get("storageUrl") or attachment.get("display_handle")
            if isinstance(url, str) and url:
                urls.append(url)
    for url in message.get("image_urls") or []:
        if isinstance(url, str) and url:
            urls.append(url)
    return urls


def collect_storage_paths(message: MessageRecord, user_id: str) -> list[str]:
    """Storage paths owned by ``user_id`` referenced from one message."""

    paths: list[str] = []
    for url in _message_urls(message):
        path = extract_storage_path(url)
        if path is None:
            logger.debug("No storage path in URL for message %s", message.get("id"))
            continue
        if not is_user_path(path, user_id):
            logger.warning(
                "Refusing to delete %s outside the namespace of user %s", path, user_id
            )
            continue
        if path not in paths:
            paths.append(path)
    return paths


class ConversationCleanupReactor:
    def __init__(self, repository: ConversationRepository, storage: BlobDeleter):
        self._repository = repository
        self._storage = storage

    async def handle_conversation_deleted(
        self, user_id: str, conversation_id: str
    ) -> CleanupReport:
        report = CleanupReport()
        messages = await self._repository.get_messages(conversation_id, user_id=user_id)

        paths = [
            path
            for message in messages
            for path in collect_storage_paths(message, user_id)
        ]
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._storage.delete_blob, path) for path in paths),
            return_exceptions=True,
        )
        for path, outcome in zip(paths, outcomes):
            self._record_file_outcome(report, path, outcome)

        for message in messages:
            try:
                if await self._repository.delete_message(message["id"]):
                    report.messages_deleted += 1
            except Exception:
                report.failures += 1
                logger.warning(
                    "Failed to delete message %s of conversation %s",
                    message["id"],
                    conversation_id,
                    exc_info=True,
                )

        logger.info(
            "Cleaned conversation %s: %d message(s), %d file(s) deleted, %d missing, %d failure(s)",
            conversation_id,
            report.messages_deleted,
            report.files_deleted,
            report.files_missing,
            report.failures,
        )
        return report

    @staticmethod
    def _record_file_outcome(report: CleanupReport, path: str, outcome: Any) -> None:
        if isinstance(outcome, BaseException):
            report.failures += 1
            logger.warning("Failed to delete blob %s", path, exc_info=outcome)
        elif outcome:
            report.files_deleted += 1
        else:
            report.files_missing += 1


__all__ = [
    "BlobDeleter",
    "CleanupReport",
    "ConversationCleanupReactor",
    "collect_storage_paths",
]
