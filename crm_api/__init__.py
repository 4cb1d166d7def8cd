"""
CRM API - REST backend с ролевой видимостью записей
"""
__version__ = "1.0.0"
