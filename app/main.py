# app/main.py  (통합 엔트리포인트)
from dotenv import load_dotenv

# 루트 .env 로딩 (settings/DB URL 모두 환경변수 기반이라 import 전에 한 번에 로딩)
load_dotenv()

from app.backend.main import app as app  # noqa: E402
