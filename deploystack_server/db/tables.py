"""Core table definitions.

These tables always exist regardless of which plugins are installed. Their
physical layout is created by the SQL files under ``migrations/``; keep the two
in sync when adding columns.
"""
from typing import Dict

from deploystack_server.db.columns import TableDefinition

CORE_TABLE_DEFINITIONS: Dict[str, TableDefinition] = {
    'users': {
        'id': lambda c: c.text().primary_key(),
        'email': lambda c: c.text().not_null().unique(),
        'name': lambda c: c.text(),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
        'updated_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'roles': {
        'id': lambda c: c.text().primary_key(),
        'name': lambda c: c.text().not_null().unique(),
        'description': lambda c: c.text(),
        # JSON encoded list of permission strings
        'permissions': lambda c: c.text().not_null(),
        'is_system_role': lambda c: c.boolean().not_null().default(False),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
        'updated_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'authUser': {
        'id': lambda c: c.text().primary_key(),
        'username': lambda c: c.text().not_null().unique(),
        'email': lambda c: c.text().not_null().unique(),
        # 'email_signup' | 'github'
        'auth_type': lambda c: c.text().not_null(),
        'first_name': lambda c: c.text(),
        'last_name': lambda c: c.text(),
        'github_id': lambda c: c.text().unique(),
        'hashed_password': lambda c: c.text(),
        'email_verified': lambda c: c.boolean().not_null().default(False),
        'role_id': lambda c: c.text().references('roles'),
    },
    'authSession': {
        'id': lambda c: c.text().primary_key(),
        'user_id': lambda c: c.text().not_null().references('authUser', on_delete='CASCADE'),
        # epoch milliseconds, owned by the session library
        'expires_at': lambda c: c.integer().not_null(),
    },
    'authKey': {
        'id': lambda c: c.text().primary_key(),
        'user_id': lambda c: c.text().not_null().references('authUser', on_delete='CASCADE'),
        'primary_key': lambda c: c.text().not_null(),
        'hashed_password': lambda c: c.text(),
        'expires': lambda c: c.integer(),
    },
    'teams': {
        'id': lambda c: c.text().primary_key(),
        'name': lambda c: c.text().not_null(),
        'slug': lambda c: c.text().not_null().unique(),
        'description': lambda c: c.text(),
        'owner_id': lambda c: c.text().not_null().references('authUser', on_delete='CASCADE'),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
        'updated_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'teamMemberships': {
        'id': lambda c: c.text().primary_key(),
        'team_id': lambda c: c.text().not_null().references('teams', on_delete='CASCADE'),
        'user_id': lambda c: c.text().not_null().references('authUser', on_delete='CASCADE'),
        # 'team_admin' | 'team_user'
        'role': lambda c: c.text().not_null(),
        'joined_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'globalSettingGroups': {
        'id': lambda c: c.text().primary_key(),
        'name': lambda c: c.text().not_null(),
        'description': lambda c: c.text(),
        'icon': lambda c: c.text(),
        'sort_order': lambda c: c.integer().not_null().default(0),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
        'updated_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'globalSettings': {
        'key': lambda c: c.text().primary_key(),
        'value': lambda c: c.text().not_null(),
        'description': lambda c: c.text(),
        'is_encrypted': lambda c: c.boolean().not_null().default(False),
        'group_id': lambda c: c.text().references('globalSettingGroups'),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
        'updated_at': lambda c: c.timestamp().not_null().default_now(),
    },
    'emailVerificationTokens': {
        'id': lambda c: c.text().primary_key(),
        'user_id': lambda c: c.text().not_null().references('authUser', on_delete='CASCADE'),
        'token_hash': lambda c: c.text().not_null().unique(),
        'expires_at': lambda c: c.timestamp().not_null(),
        'created_at': lambda c: c.timestamp().not_null().default_now(),
    },
}
