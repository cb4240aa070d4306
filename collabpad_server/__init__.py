"""
collabpad 서버 패키지 초기화 모듈.

서버 구성 요소는 다음 하위 모듈에 정리되어 있다.
- protocol: JSON line 기반 프레이밍/직렬화 및 릴레이 이벤트 이름
- store: 세션 상태와 인메모리 세션 저장소
- lifecycle: 세션 참여/이탈/만료 정책
- hub: 연결 관리 및 세션 단위 팬아웃
- http_api: 세션 생성/조회 및 문서 저장소 HTTP 엔드포인트
- documents: 파일 기반 문서 저장소
- main: 서버 진입점
"""

__all__ = [
    "documents",
    "hub",
    "http_api",
    "lifecycle",
    "protocol",
    "store",
]
