"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.
"""

# Timeouts (seconds)
COMMAND_TIMEOUT = 60
FLASH_COMMAND_TIMEOUT = 600
WAIT_FOR_DEVICE_TIMEOUT = 30
DEVICE_POLL_INTERVAL = 1.0
HTTP_TIMEOUT = 30
URL_PROBE_TIMEOUT = 10

# Catalog cache
DEFAULT_CACHE_TTL = 300

# Network retry policy, never applied to device commands
HTTP_RETRIES = 3
HTTP_BACKOFF_FACTOR = 0.5
HTTP_RETRY_STATUSES = (429, 500, 502, 503, 504)

DOWNLOAD_CHUNK_SIZE = 8192
PROGRESS_MIN_INTERVAL = 0.5

RADIO_PARTITIONS = ("radio", "modem")
FILESYSTEMS = ("ext4", "f2fs", "vfat")
REBOOT_MODES = ("system", "bootloader", "recovery")
OPERATIONS = ("rom_flash", "radio_flash", "root")

# Matched case-insensitively against the product and brand variables
ONEPLUS_MARKERS = ("oneplus", "op", "nord")

# Stage -> (start %, end %) of the overall session progress
STAGE_PROGRESS = {
    "detecting": (0, 5),
    "backing-up": (5, 15),
    "downloading": (15, 60),
    "verifying": (60, 70),
    "flashing": (70, 90),
    "confirming": (90, 100),
}

# None means the stage cannot be interrupted once entered
STAGE_TIMEOUTS = {
    "detecting": 60,
    "backing-up": 300,
    "downloading": 1800,
    "verifying": 180,
    "flashing": None,
    "confirming": 120,
}

SUPPORTED_DEVICES = {
    "enchilada": {"name": "OnePlus 6", "rom_flash": True, "radio_flash": True, "root": True},
    "fajita": {"name": "OnePlus 6T", "rom_flash": True, "radio_flash": True, "root": True},
    "guacamole": {"name": "OnePlus 7 Pro", "rom_flash": True, "radio_flash": True, "root": True},
    "guacamoleb": {"name": "OnePlus 7", "rom_flash": True, "radio_flash": True, "root": True},
    "hotdog": {"name": "OnePlus 7T Pro", "rom_flash": True, "radio_flash": True, "root": True},
    "hotdogb": {"name": "OnePlus 7T", "rom_flash": True, "radio_flash": True, "root": True},
    "instantnoodle": {"name": "OnePlus 8", "rom_flash": True, "radio_flash": True, "root": True},
    "instantnoodlep": {"name": "OnePlus 8 Pro", "rom_flash": True, "radio_flash": True, "root": True},
    "kebab": {"name": "OnePlus 8T", "rom_flash": True, "radio_flash": True, "root": True},
    "lemonade": {"name": "OnePlus 9", "rom_flash": True, "radio_flash": True, "root": True},
    "lemonadep": {"name": "OnePlus 9 Pro", "rom_flash": True, "radio_flash": True, "root": True},
    "martini": {"name": "OnePlus 9RT", "rom_flash": True, "radio_flash": True, "root": True},
    "ne2213": {
        "name": "OnePlus 10 Pro",
        "rom_flash": True,
        "radio_flash": False,
        "root": True,
        "warnings": ["Modem images for this model are region locked, radio flashing is disabled."],
    },
    "op515bl1": {
        "name": "OnePlus OP515BL1",
        "rom_flash": True,
        "radio_flash": False,
        "root": False,
        "warnings": ["Experimental support, only ROM flashing has been tested."],
    },
    "salami": {
        "name": "OnePlus 11",
        "rom_flash": True,
        "radio_flash": True,
        "root": True,
        "warnings": ["Relocking the bootloader with a modified modem will brick the device."],
    },
    "aston": {
        "name": "OnePlus 12R",
        "rom_flash": True,
        "radio_flash": True,
        "root": True,
        "warnings": ["Uses A/B partitions, the radio is flashed to the active slot only."],
    },
    "avicii": {"name": "OnePlus Nord", "rom_flash": True, "radio_flash": True, "root": True},
    "billie": {"name": "OnePlus Nord N10 5G", "rom_flash": True, "radio_flash": True, "root": True},
}

COMMON_WARNINGS = [
    "Flashing firmware can permanently damage (brick) your device.",
    "Keep the device connected and charged above 50% until the operation completes.",
]

DESTRUCTIVE_WARNING = (
    "WARNING: this operation modifies device partitions and cannot be undone."
)
UNLOCK_WARNING = (
    "Please confirm bootloader unlock on your device. Unlocking erases all user data."
)
