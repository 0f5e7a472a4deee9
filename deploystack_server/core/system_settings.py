"""Core global settings seeded on every successful database initialization.

Seeding only creates what is missing; operator-edited values survive
restarts. Plugins add their own groups through ``global_settings_extension``
(see ``PluginManager.register_plugin_settings``).
"""
from __future__ import annotations
from typing import List

from deploystack_server.plugin_runtime.settings_registry import RegistrationResult, register_settings
from deploystack_server.plugin_runtime.types import SettingDefinition, SettingGroupDefinition
from deploystack_server.services.global_settings import GlobalSettingsService

CORE_GROUPS: List[SettingGroupDefinition] = [
    SettingGroupDefinition('global', 'Global Settings', 'General application configuration settings', 'settings', 0),
    SettingGroupDefinition('smtp', 'SMTP Mail Settings', 'Outgoing mail server used for notifications', 'mail', 1),
    SettingGroupDefinition('github-oauth', 'GitHub OAuth', 'Sign in with GitHub', 'github', 2),
]

_DEFS: List[SettingDefinition] = [
    SettingDefinition('global.page_url', 'http://localhost:5173', 'Base URL for the application frontend', group_id='global'),
    SettingDefinition('global.send_mail', 'false', 'Enable or disable email sending functionality', group_id='global'),
    SettingDefinition('global.enable_login', 'true', 'Allow users to log in', group_id='global'),
    SettingDefinition('global.enable_email_registration', 'true', 'Allow sign up with email and password', group_id='global'),
    SettingDefinition('smtp.host', '', 'SMTP server hostname (e.g., smtp.gmail.com)', required=True, group_id='smtp'),
    SettingDefinition('smtp.port', '587', 'SMTP server port (587 for TLS, 465 for SSL, 25 for unencrypted)', required=True, group_id='smtp'),
    SettingDefinition('smtp.username', '', 'SMTP authentication username', required=True, group_id='smtp'),
    SettingDefinition('smtp.password', '', 'SMTP authentication password', encrypted=True, required=True, group_id='smtp'),
    SettingDefinition('smtp.secure', 'true', 'Use SSL/TLS for SMTP connection (true/false)', group_id='smtp'),
    SettingDefinition('smtp.from_name', 'DeployStack', 'Default sender name for emails', group_id='smtp'),
    SettingDefinition('smtp.from_email', '', 'Default sender email address', group_id='smtp'),
    SettingDefinition('github.oauth.client_id', '', 'GitHub OAuth application client ID', group_id='github-oauth'),
    SettingDefinition('github.oauth.client_secret', '', 'GitHub OAuth application client secret', encrypted=True, group_id='github-oauth'),
    SettingDefinition('github.oauth.enabled', 'false', 'Enable GitHub OAuth authentication (true/false)', group_id='github-oauth'),
    SettingDefinition(
        'github.oauth.callback_url',
        'http://localhost:3000/api/auth/github/callback',
        'GitHub OAuth callback URL',
        group_id='github-oauth',
    ),
    SettingDefinition('github.oauth.scope', 'user:email', 'GitHub OAuth requested scopes', group_id='github-oauth'),
]


async def seed_system_settings(service: GlobalSettingsService) -> RegistrationResult:
    """Ensure core groups and keys exist."""
    return await register_settings(service, CORE_GROUPS, _DEFS, owner='core')


async def missing_required_settings(service: GlobalSettingsService) -> List[str]:
    """Required core keys that are still empty."""
    missing: List[str] = []
    for d in _DEFS:
        if not d.required:
            continue
        value = await service.get_value(d.key)
        if not value:
            missing.append(d.key)
    return missing
