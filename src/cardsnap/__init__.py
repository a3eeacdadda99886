# CardSnap Vault - Main Package
#
# Local, offline-first vault for loyalty and discount cards, with
# password-encrypted portable backup archives.

__version__ = "0.4.0"
__author__ = "CardSnap Team"
__description__ = "Encrypted backup and restore for a card wallet"
