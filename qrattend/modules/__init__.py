# QR Attendance API - Modules Package
"""
Business logic of the QR attendance API. Managers take a DatabaseManager and
return result dicts; the HTTP layer lives in ``qrattend.api``.
"""
