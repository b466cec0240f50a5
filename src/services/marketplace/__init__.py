# src/services/marketplace/__init__.py
"""
Marketplace API.
HTTP-слой над доменными сервисами маркетплейса.
"""
