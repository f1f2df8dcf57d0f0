"""녹화 아카이브 내보내기 모듈.

stopped 상태의 녹화 세션을 하나의 ZIP 아카이브로 묶습니다.

Archive Layout:
    exam-recordings-2026-10-19.zip
    ├── 20231234.webm     (등록 번호)
    ├── 20235678.webm
    └── UNI003.webm       (등록 번호가 없으면 identity)

Note:
    - 데이터가 없거나 실패한 세션은 건너뜀
    - 대상이 하나도 없어도 빈 ZIP을 정상적으로 생성
    - 조립 중 실패는 ExportError (부분 아카이브는 만들지 않음)
"""
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set

from .config import storage_config
from .session import RecordingSession, RecordingState
from ..errors import ExportError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w.-]+")


@dataclass
class RecordingArchive:
    """생성된 아카이브.

    Attributes:
        name (str): 아카이브 파일명
        data (bytes): ZIP 바이트
        members (List[str]): 포함된 미디어 파일명 목록
    """
    name: str
    data: bytes
    members: List[str] = field(default_factory=list)


def _safe_stem(name: str) -> str:
    stem = _UNSAFE_CHARS.sub("_", name).strip("._")
    return stem or "participant"


class ArchiveExporter:
    """녹화 세션을 ZIP으로 묶는 내보내기 도구."""

    def __init__(self, extension: str = "webm", prefix: str = "exam-recordings"):
        self.extension = extension
        self.prefix = prefix

    def archive_name(self, exported_at: datetime) -> str:
        return f"{self.prefix}-{exported_at.strftime('%Y-%m-%d')}.zip"

    def _member_name(self, session: RecordingSession, used: Set[str]) -> str:
        stem = _safe_stem(session.display_name)
        name = f"{stem}.{self.extension}"
        suffix = 2
        while name in used:
            name = f"{stem}-{suffix}.{self.extension}"
            suffix += 1
        used.add(name)
        return name

    def export(
        self,
        sessions: Iterable[RecordingSession],
        exported_at: Optional[datetime] = None,
    ) -> RecordingArchive:
        """stopped 세션들을 하나의 아카이브로 묶습니다.

        Args:
            sessions: 녹화 세션 목록
            exported_at: 아카이브 이름에 쓸 시각 (기본값: 현재 시각)

        Returns:
            RecordingArchive: 이름, ZIP 바이트, 포함된 파일명

        Raises:
            ExportError: 아카이브 조립에 실패한 경우
        """
        exported_at = exported_at or datetime.now()
        name = self.archive_name(exported_at)
        members: List[str] = []
        used: Set[str] = set()

        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_STORED) as archive:
                for session in sessions:
                    if session.state is not RecordingState.STOPPED:
                        continue
                    if session.error is not None:
                        logger.warning(f"[Export] {session.display_name} 제외 (녹화 실패: {session.error})")
                        continue
                    if not session.exportable:
                        continue

                    data = session.blob if session.blob is not None else b"".join(session.chunks)
                    member = self._member_name(session, used)
                    archive.writestr(member, data)
                    members.append(member)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise ExportError(f"failed to build {name}: {e}") from e

        logger.info(f"[Export] {name} 생성: {len(members)}개 파일")
        return RecordingArchive(name=name, data=buffer.getvalue(), members=members)

    def save(self, archive: RecordingArchive, directory: Optional[Path] = None) -> Path:
        """아카이브를 디스크에 저장합니다.

        Raises:
            ExportError: 파일을 쓸 수 없는 경우
        """
        directory = Path(directory) if directory is not None else storage_config.RECORDINGS_DIR
        path = directory / archive.name
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(archive.data)
        except OSError as e:
            raise ExportError(f"failed to write {path}: {e}") from e
        logger.info(f"[Export] 저장 완료: {path} ({len(archive.data)} bytes)")
        return path
