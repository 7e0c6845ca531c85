"""
MssqlInstaller - Unattended SQL Server installation and configuration tool
"""

__version__ = "0.1.0"

from .core import InstallerError, MssqlInstaller

__all__ = ["MssqlInstaller", "InstallerError"]
