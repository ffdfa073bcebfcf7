"""
Local-disk attachment store for complaint and message uploads.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from fastapi import UploadFile

logger = logging.getLogger(__name__)

ALLOWED_COMPLAINT_TYPES = re.compile(r"jpeg|jpg|png|pdf|doc|docx")


class AttachmentError(Exception):
    """Raised when an upload is rejected by the attachment policy."""
    pass


@dataclass
class AttachmentPolicy:
    max_bytes: Optional[int] = None
    allowed: Optional[re.Pattern] = None


def _safe_filename(name: str) -> str:
    name = name.replace("\\", "_").replace("/", "_").replace("..", "_")
    return name.strip() or "file.bin"


class AttachmentStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def _check(self, upload: UploadFile, data: bytes, policy: AttachmentPolicy) -> None:
        original = upload.filename or ""
        if policy.allowed is not None:
            ext = Path(original).suffix.lower()
            mimetype = upload.content_type or ""
            if not (policy.allowed.search(mimetype) and policy.allowed.search(ext)):
                raise AttachmentError("Only images and documents are allowed!")
        if policy.max_bytes is not None and len(data) > policy.max_bytes:
            raise AttachmentError(f"File too large: {original} exceeds {policy.max_bytes} bytes")

    async def save(
        self,
        uploads: Sequence[UploadFile],
        policy: AttachmentPolicy,
        names: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, str]]:
        """Validate every upload, then write them under generated unique names.

        Returns attachment records: path (served under /uploads), name, original_name.
        """
        names = list(names or [])
        pending = []
        for upload in uploads:
            data = await upload.read()
            self._check(upload, data, policy)
            pending.append((upload, data))

        self.root.mkdir(parents=True, exist_ok=True)
        out = []
        for index, (upload, data) in enumerate(pending):
            original = upload.filename or "file.bin"
            stored = f"{uuid.uuid4().hex}-{_safe_filename(original)}"
            (self.root / stored).write_bytes(data)
            out.append({
                "path": f"uploads/{stored}",
                "name": names[index] if index < len(names) and names[index] else original,
                "original_name": original,
            })
        if out:
            logger.info("Stored %d attachment(s) in %s", len(out), self.root)
        return out


def complaint_policy(max_bytes: int) -> AttachmentPolicy:
    return AttachmentPolicy(max_bytes=max_bytes, allowed=ALLOWED_COMPLAINT_TYPES)


MESSAGE_POLICY = AttachmentPolicy()
