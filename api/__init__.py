"""
API 層

很薄的 FastAPI router：解析 request、呼叫 manager、把業務異常轉成 HTTP status code。
這裡不放業務邏輯。
"""
