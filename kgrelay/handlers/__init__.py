"""Bundled handler modules.

Each public module here becomes a route (``user_vip_detail.py`` →
``/user/vip/detail``) and exposes ``async def handle(context, request_fn)``.
Modules starting with ``_`` hold shared helpers and are never routed.
"""
