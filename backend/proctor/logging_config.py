"""로그 설정 모듈.

콘솔 + 날짜별 파일 로그를 설정하고, 보관 기간이 지난 로그 파일을 정리합니다.

Environment Variables:
    LOG_LEVEL: 로그 레벨 (기본 INFO)
    LOG_DIR: 로그 디렉토리 (기본 logs)
    LOG_RETENTION_DAYS: 로그 보관 기간 (일, 기본 60)
"""
import glob
import logging
import os
from datetime import datetime, timedelta

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def cleanup_old_logs(log_dir: str = LOG_DIR, retention_days: int = LOG_RETENTION_DAYS, prefix: str = "proctor_") -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)
        prefix: 로그 파일명 접두사 (``<prefix>YYYYMMDD.log``)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, f"{prefix}*.log")):
        date_str = os.path.basename(log_file)[len(prefix):-len(".log")]
        try:
            file_date = datetime.strptime(date_str, "%Y%m%d")
        except ValueError:
            continue
        if file_date < cutoff_date:
            try:
                os.remove(log_file)
            except OSError:
                continue
            deleted_count += 1

    return deleted_count


def setup_logging(name: str = "proctor", level: str = LOG_LEVEL, log_dir: str = LOG_DIR) -> str:
    """콘솔과 날짜별 파일 핸들러로 루트 로거를 설정합니다.

    Returns:
        str: 로그 파일 경로
    """
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"{name}_{datetime.now().strftime('%Y%m%d')}.log")

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),  # 콘솔 출력
            logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
        ],
    )
    # aiortc/aioice 내부 로그는 과도하게 많음
    logging.getLogger("aioice").setLevel(logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"로깅 초기화 완료: level={level}, file={log_filename}")

    deleted = cleanup_old_logs(log_dir, prefix=f"{name}_")
    if deleted > 0:
        logger.info(f"오래된 로그 파일 {deleted}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")
    return log_filename
