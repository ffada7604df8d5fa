"""SecureVault Meta information.
   SecureVault keeps vault keys in memory and encrypts sensitive entry fields.
"""
__title__ = 'securevault'
__description__ = (
   'SecureVault key management and envelope encryption '
   'for client-side password vaults.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 SecureVault Developers'
__author__ = 'SecureVault Developers'
__author_email__ = 'dev@securevault.invalid'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/securevault/securevault'
