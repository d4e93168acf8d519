# app/__init__.py
# Approval Desk - 多级审批与多渠道通知
