"""ブックマークのタグレジストリと統合エンジン."""

__version__ = "0.1.0"
