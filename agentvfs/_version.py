"""
모듈명: _version.py
설명: agentvfs 패키지 버전 정보

버전 형식: MAJOR.MINOR.PATCH (Semantic Versioning)
"""

__version__ = "0.1.0"
