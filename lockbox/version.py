"""Lockbox Meta information.
   Lockbox is a portable, single-file secrets vault protected by a
   password and a time-based one-time password.
"""
__title__ = 'lockbox'
__description__ = (
   'Portable single-file secrets vault with password '
   'and TOTP authentication.'
)
__version__ = '0.1.0'
__license__ = 'Apache-2.0'
