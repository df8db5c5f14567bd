"""Signers that submit trade legs."""

from .base import Signer, SignerReceipt
from .paper import PaperSigner
from .ccxt_signer import CcxtSigner

__all__ = [
    'Signer',
    'SignerReceipt',
    'PaperSigner',
    'CcxtSigner'
]
