# app/core/__init__.py
# 核心模块：配置、日志、异常、Redis
