from certvault.toolchain.keypair import KeyPair, KeyPairGenerator

__all__ = ["KeyPair", "KeyPairGenerator"]
