# app/api/__init__.py
# HTTP 接口层
