"""Top-level package for the EasyTech point-of-sale application.

The sale flow lives in :mod:`sale_builder`, tickets are rendered by
:mod:`receipt`, the in-memory stores are in :mod:`dao`, the settings panel
is :mod:`admin_service`, and :mod:`app` ties them together for :mod:`cli`.
"""
