"""Multi-file upload pipeline: presigned destination, streamed PUT, finalize.

Write path per accepted file:
1. Request a presigned upload URL and permanent object path
2. Stream the bytes to the URL, publishing progress as they go
3. Finalize the object with its metadata and merge back what the server
   normalised

Every file settles independently. A failure is recorded on that file's
task and the rest of the batch carries on.
"""

import asyncio
from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .api import JournalAPI
from .bus import EventBus
from .config import UploadConfig
from .errors import (
    ApiError,
    FileRejected,
    RejectionReason,
    UploadError,
    UploadInProgressError,
    UploadStage,
)
from .media import is_accepted
from .models import Rejection, UploadBatchResult, UploadFile, UploadTask


class UploadOrchestrator:
    """
    Owns the task list for one upload session.

    Not re-entrant: starting a second batch while one is settling raises
    UploadInProgressError, since a new batch replaces the task list that
    in-flight progress callbacks index into.
    """

    def __init__(self, api: JournalAPI, config: UploadConfig, bus: Optional[EventBus] = None):
        self.api = api
        self.config = config
        self.bus = bus or EventBus()
        self._tasks: List[UploadTask] = []
        self._busy = False

    @property
    def tasks(self) -> List[UploadTask]:
        return list(self._tasks)

    @property
    def is_uploading(self) -> bool:
        return self._busy

    def validate(
        self,
        files: Iterable[UploadFile],
        max_files: Optional[int] = None,
        max_file_size: Optional[int] = None,
        accepted_types: Optional[Sequence[str]] = None,
    ) -> Tuple[List[UploadFile], List[Rejection]]:
        """Split a selection into accepted files and rejections, without network calls."""
        if max_files is None:
            max_files = self.config.max_files
        if max_file_size is None:
            max_file_size = self.config.max_file_size
        if accepted_types is None:
            accepted_types = self.config.accepted_types

        accepted: List[UploadFile] = []
        rejected: List[Rejection] = []

        for file in files:
            try:
                self._check_file(file, max_file_size, accepted_types)
                if len(accepted) >= max_files:
                    raise FileRejected(
                        file.name,
                        RejectionReason.TOO_MANY_FILES,
                        f"Only {max_files} file{'s' if max_files != 1 else ''} can be uploaded at once",
                    )
            except FileRejected as e:
                logger.warning(f"Rejected {e.name}: {e.message}")
                rejected.append(Rejection(name=e.name, reason=e.reason, message=e.message))
                continue
            accepted.append(file)

        return accepted, rejected

    async def upload(
        self,
        files: Iterable[UploadFile],
        max_files: Optional[int] = None,
        max_file_size: Optional[int] = None,
        accepted_types: Optional[Sequence[str]] = None,
    ) -> UploadBatchResult:
        """
        Validate and upload a batch of files.

        Returns once every task has reached a terminal state.
        """
        if self._busy:
            raise UploadInProgressError("An upload batch is already in progress")

        self._busy = True
        try:
            accepted, rejected = self.validate(files, max_files, max_file_size, accepted_types)
            self._tasks = [UploadTask(index=i, file=f) for i, f in enumerate(accepted)]
            result = UploadBatchResult(tasks=self._tasks, rejected=rejected)

            if not self._tasks:
                logger.info(f"Nothing to upload ({len(rejected)} rejected)")
                return result

            semaphore = asyncio.Semaphore(self.config.max_concurrent)

            async def run(task: UploadTask) -> None:
                async with semaphore:
                    await self._upload_one(task)

            await asyncio.gather(*(run(task) for task in self._tasks))

            logger.info(
                f"Upload batch settled: {len(result.uploaded_paths)}/{len(self._tasks)} stored, "
                f"{len(result.media)} finalized, {len(rejected)} rejected"
            )
            await self.bus.publish(
                "upload.batch_completed",
                source="uploader",
                paths=result.uploaded_paths,
                media=[m.to_payload() for m in result.media],
                failed=[t.index for t in result.failed],
                rejected=[r.name for r in rejected],
            )
            return result
        finally:
            self._busy = False

    @staticmethod
    def _check_file(file: UploadFile, max_file_size: int, accepted_types: Sequence[str]) -> None:
        if not is_accepted(file.mime_type, accepted_types):
            raise FileRejected(
                file.name,
                RejectionReason.UNSUPPORTED_TYPE,
                f"File {file.name} has unsupported type {file.mime_type}",
            )
        if file.size > max_file_size:
            limit_mb = round(max_file_size / 1024 / 1024)
            raise FileRejected(
                file.name,
                RejectionReason.TOO_LARGE,
                f"File {file.name} is too large. Maximum size is {limit_mb}MB",
            )

    async def _upload_one(self, task: UploadTask) -> None:
        await self.bus.publish("upload.started", source="uploader", index=task.index, name=task.file.name)
        try:
            destination = await self._request_destination()
            await self._transfer(task, destination.upload_url)
            task.mark_transferred(destination.object_path)
            await self._publish_progress(task)
            await self._finalize(task)
        except UploadError as e:
            task.fail(e.stage, e.message)
            logger.warning(f"Upload of {task.file.name} failed at {e.stage.value}: {e.message}")
            await self.bus.publish(
                "upload.failed",
                source="uploader",
                index=task.index,
                stage=e.stage.value,
                error=e.message,
            )
            return

        await self.bus.publish(
            "upload.completed",
            source="uploader",
            index=task.index,
            path=task.path,
            mime_type=task.mime_type,
        )

    async def _request_destination(self):
        try:
            return await self.api.request_upload_destination()
        except ApiError as e:
            raise UploadError(UploadStage.DESTINATION, f"Failed to get upload URL: {e.message}") from e

    async def _transfer(self, task: UploadTask, upload_url: str) -> None:
        async def on_progress(sent: int, total: int) -> None:
            percent = (sent * 100) // total if total else 0
            if task.advance(percent):
                await self._publish_progress(task)

        try:
            await self.api.put_object(
                upload_url,
                task.file,
                chunk_size=self.config.chunk_size,
                on_progress=on_progress,
            )
        except ApiError as e:
            raise UploadError(UploadStage.TRANSFER, e.message) from e
        except OSError as e:
            raise UploadError(UploadStage.TRANSFER, f"Could not read {task.file.name}: {e}") from e

    async def _finalize(self, task: UploadTask) -> None:
        try:
            data = await self.api.finalize_media(task.path, task.mime_type, task.original_name)
        except ApiError as e:
            raise UploadError(UploadStage.FINALIZE, f"Failed to finalize upload: {e.message}") from e

        task.mark_finalized(
            data.get("objectPath"),
            data.get("mimeType"),
            data.get("originalName"),
        )

    async def _publish_progress(self, task: UploadTask) -> None:
        logger.debug(f"{task.file.name}: {task.progress}%")
        await self.bus.publish(
            "upload.progress",
            source="uploader",
            index=task.index,
            progress=task.progress,
        )
