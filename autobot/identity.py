"""AUTOBOT identity constants."""

__codename__ = "AUTOBOT"
__tagline__ = "Gate every change."
__version__ = "0.4.0"

BANNER = r"""
    _   _   _ _____ ___  ___  ___ _____
   /_\ | | | |_   _/ _ \| _ )/ _ \_   _|
  / _ \| |_| | | || (_) | _ \ (_) || |
 /_/ \_\\___/  |_| \___/|___/\___/ |_|
"""
