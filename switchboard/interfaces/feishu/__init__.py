"""Feishu (Lark) chat surface."""
