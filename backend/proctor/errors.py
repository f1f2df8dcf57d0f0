"""프록터링 예외 정의 모듈.

참가자별/스트림별 장애를 격리하기 위한 예외 계층입니다.
내보내기(ExportError)를 제외한 모든 예외는 해당 참가자 또는 스트림에만
영향을 주며, 다른 세션을 중단시키지 않습니다.

Classes:
    ProctoringError: 모든 예외의 기반 클래스
    TransportError: 릴레이 연결 불가/끊김 (재연결로 복구 가능)
    NegotiationError: 잘못되었거나 단계에 맞지 않는 offer/answer/candidate
    MessageFormatError: 파싱할 수 없는 시그널링 메시지
    MediaAcquisitionError: 화면/카메라 캡처 실패 (요청한 참가자에게만 전달)
    RecordingError: 개별 스트림 녹화 파이프라인 실패
    ExportError: 아카이브 생성 실패 (작업 전체 실패)
    RosterError: 참가자 명단/토큰 REST 호출 실패
"""


class ProctoringError(Exception):
    """프록터링 시스템 예외의 기반 클래스."""


class TransportError(ProctoringError):
    """시그널링 릴레이에 연결할 수 없거나 연결이 끊어졌을 때 발생합니다."""


class NegotiationError(ProctoringError):
    """offer/answer/candidate가 잘못되었거나 현재 단계에서 허용되지 않을 때 발생합니다."""


class MessageFormatError(NegotiationError):
    """시그널링 메시지를 해석할 수 없을 때 발생합니다."""


class MediaAcquisitionError(ProctoringError):
    """캡처 장치 또는 권한 문제로 미디어를 얻지 못했을 때 발생합니다."""


class RecordingError(ProctoringError):
    """하나의 스트림 녹화 파이프라인이 실패했을 때 발생합니다."""


class ExportError(ProctoringError):
    """녹화 아카이브를 만들지 못했을 때 발생합니다."""


class RosterError(ProctoringError):
    """참가자 명단 조회 또는 세션 토큰 발급에 실패했을 때 발생합니다."""
