"""Nintendo 64 development tools: Controller Pak file system, ROM and font map builders, controller state and cart helpers."""

__version__ = "0.1.0"

__all__ = ["carts", "controller", "mkfont", "mkrom", "objcopy", "pakfs", "uf2", "z64"]