"""Static equipment data.

The USB id table ships with the package so detection works offline and
always recognizes the common cameras and mounts. Remote catalog entries
never override it.
"""

from __future__ import annotations

from indi_autodetect.devices.types import DeviceType, EquipmentEntry

# (key, name, type, manufacturer, model, driver, aliases, category, description)
_USB_TABLE: tuple[tuple, ...] = (
    # ZWO ASI
    ("03c3:120a", "ASI120MC", DeviceType.CAMERA, "ZWO", "ASI120MC", "indi-asi",
     ["asi120mc", "zwo asi120mc"], "ccd", None),
    ("03c3:120b", "ASI120MM", DeviceType.CAMERA, "ZWO", "ASI120MM", "indi-asi",
     ["asi120mm", "zwo asi120mm", "asi 120mm"], "ccd",
     "ZWO ASI120MM, usable as main or guide camera"),
    ("03c3:120c", "ASI120MC-S", DeviceType.GUIDE_CAMERA, "ZWO", "ASI120MC-S",
     "indi-asi", ["asi120mc-s"], "ccd", None),
    ("03c3:120d", "ASI120MM-S", DeviceType.GUIDE_CAMERA, "ZWO", "ASI120MM-S",
     "indi-asi", ["asi120mm-s"], "ccd", None),
    ("03c3:178a", "ASI178MC", DeviceType.CAMERA, "ZWO", "ASI178MC", "indi-asi",
     ["asi178mc"], "ccd", None),
    ("03c3:178b", "ASI178MM", DeviceType.GUIDE_CAMERA, "ZWO", "ASI178MM",
     "indi-asi", ["asi178mm"], "ccd", None),
    ("03c3:290a", "ASI290MC", DeviceType.GUIDE_CAMERA, "ZWO", "ASI290MC",
     "indi-asi", ["asi290mc"], "ccd", None),
    ("03c3:290b", "ASI290MM", DeviceType.GUIDE_CAMERA, "ZWO", "ASI290MM",
     "indi-asi", ["asi290mm"], "ccd", None),
    ("03c3:294a", "ASI294MC Pro", DeviceType.CAMERA, "ZWO", "ASI294MC Pro",
     "indi-asi", ["asi294mc", "asi294mc pro"], "ccd", None),
    ("03c3:533a", "ASI533MC Pro", DeviceType.CAMERA, "ZWO", "ASI533MC Pro",
     "indi-asi", ["asi533mc"], "ccd", None),
    ("03c3:2600", "ASI2600MC Pro", DeviceType.CAMERA, "ZWO", "ASI2600MC Pro",
     "indi-asi", ["asi2600mc"], "ccd", None),
    ("03c3:6200", "ASI6200MC Pro", DeviceType.CAMERA, "ZWO", "ASI6200MC Pro",
     "indi-asi", ["asi6200mc"], "ccd", None),
    # QHY
    ("1618:0901", "QHY5III-290M", DeviceType.GUIDE_CAMERA, "QHY", "QHY5III-290M",
     "indi-qhy", ["qhy5iii-290m"], "ccd", None),
    ("1618:0920", "QHY268M", DeviceType.CAMERA, "QHY", "QHY268M", "indi-qhy",
     ["qhy268m"], "ccd", None),
    ("1618:2850", "QHY294C", DeviceType.CAMERA, "QHY", "QHY294C", "indi-qhy",
     ["qhy294c"], "ccd", None),
    ("1618:6940", "QHY600M", DeviceType.CAMERA, "QHY", "QHY600M", "indi-qhy",
     ["qhy600m"], "ccd", None),
    # DSLRs
    ("04a9:*", "Canon DSLR", DeviceType.CAMERA, "Canon", "DSLR", "indi-gphoto",
     ["canon", "dslr"], "ccd", None),
    ("04b0:*", "Nikon DSLR", DeviceType.CAMERA, "Nikon", "DSLR", "indi-gphoto",
     ["nikon", "dslr"], "ccd", None),
    # Mounts behind USB-serial bridges
    ("0403:6001", "Celestron Mount", DeviceType.MOUNT, "Celestron",
     "CGX/CGX-L/CGEM II", "indi-celestron", ["celestron", "cgx", "cgem"],
     "telescope", None),
    ("067b:2303", "Sky-Watcher Mount", DeviceType.MOUNT, "Sky-Watcher",
     "EQ6-R/HEQ5 Pro", "indi-eqmod", ["skywatcher", "eq6r", "heq5"],
     "telescope", None),
    # Whole-vendor mappings
    ("2e8d:*", "Player One Camera", DeviceType.CAMERA, "Player One Astronomy",
     "Generic", "indi-playerone", ["playerone"], "ccd", None),
    ("0547:*", "ToupTek Camera", DeviceType.CAMERA, "ToupTek", "Generic",
     "indi-toupbase", ["touptek"], "ccd", None),
    ("16cc:*", "FLI Camera", DeviceType.CAMERA, "Finger Lakes Instruments",
     "Generic", "indi-fli", ["fli"], "ccd", None),
    ("0d56:*", "SBIG Camera", DeviceType.CAMERA, "SBIG", "Generic", "indi-sbig",
     ["sbig"], "ccd", None),
    ("1278:*", "Starlight Express", DeviceType.CAMERA, "Starlight Express",
     "Generic", "indi-sx", ["starlight express", "sx"], "ccd", None),
    ("125c:*", "Apogee Camera", DeviceType.CAMERA, "Apogee", "Generic",
     "indi-apogee", ["apogee"], "ccd", None),
    ("1ab1:*", "Moravian Camera", DeviceType.CAMERA, "Moravian Instruments",
     "Generic", "indi-mi", ["moravian"], "ccd", None),
)

#: Third-party drivers always considered available, even when the
#: indi-3rdparty tree cannot be fetched.
KNOWN_THIRDPARTY_DRIVERS: tuple[str, ...] = (
    # Cameras
    "indi-asi",
    "indi-qhy",
    "indi-gphoto",
    "indi-playerone",
    "indi-svbony",
    "indi-toupbase",
    "indi-atik",
    "indi-apogee",
    "indi-fli",
    "indi-sbig",
    "indi-sx",
    "indi-mi",
    "indi-dsi",
    "indi-ffmv",
    "indi-fishcamp",
    "indi-gige",
    "indi-nightscape",
    "indi-qsi",
    "indi-webcam",
    "indi-pentax",
    "indi-libcamera",
    "indi-mgen",
    # Mounts
    "indi-eqmod",
    "indi-celestronaux",
)


def static_usb_entries(timestamp: str) -> dict[str, EquipmentEntry]:
    """Build the static USB table, stamping every entry with ``timestamp``.

    Every entry is auto-installable and its package is its driver name.
    """
    return {
        key: EquipmentEntry(
            name=name,
            type=device_type,
            manufacturer=manufacturer,
            model=model,
            driver_name=driver,
            package_name=driver,
            auto_installable=True,
            aliases=list(aliases),
            description=description,
            category=category,
            last_updated=timestamp,
        )
        for (key, name, device_type, manufacturer, model, driver, aliases,
             category, description) in _USB_TABLE
    }


_CCD_HINTS = (
    "asi", "qhy", "gphoto", "playerone", "svbony", "toupbase", "atik",
    "apogee", "fli", "sbig", "sx", "mi", "dsi", "ffmv", "fishcamp", "gige",
    "nightscape", "qsi", "webcam", "pentax", "libcamera", "mgen", "cam",
)
_TELESCOPE_HINTS = (
    "eqmod", "celestron", "avalon", "bresser", "ioptron", "orion",
    "starbook", "talon", "mount",
)
_FOCUSER_HINTS = ("focus", "moonlite", "beefocus", "aok")
_DOME_HINTS = ("dome", "maxdome", "nexdome", "rolloff")
_WEATHER_HINTS = ("weather", "cloudwatcher", "weewx", "nut")


def categorize_driver(driver_name: str) -> str:
    """Guess the upstream category of a third-party driver directory.

    Returns one of ccd, telescope, focuser, dome, weather or aux.

    Example:
        >>> categorize_driver("indi-eqmod")
        'telescope'
    """
    name = driver_name.lower()
    if any(hint in name for hint in _CCD_HINTS):
        return "ccd"
    if any(hint in name for hint in _TELESCOPE_HINTS):
        return "telescope"
    if any(hint in name for hint in _FOCUSER_HINTS):
        return "focuser"
    if any(hint in name for hint in _DOME_HINTS):
        return "dome"
    if any(hint in name for hint in _WEATHER_HINTS):
        return "weather"
    return "aux"


def map_driver_to_equipment_type(driver_name: str, category: str) -> DeviceType:
    """Equipment type for a catalog driver, from its category and name."""
    name = driver_name.lower()
    if category == "telescope" or any(h in name for h in ("mount", "telescope", "eq")):
        return DeviceType.MOUNT
    if category == "ccd" or any(h in name for h in ("cam", "ccd", "asi", "qhy")):
        return DeviceType.CAMERA
    if category == "focuser" or "focus" in name:
        return DeviceType.FOCUSER
    if "filter" in name or "wheel" in name:
        return DeviceType.FILTER_WHEEL
    if category == "dome" or "dome" in name:
        return DeviceType.DOME
    if category == "weather" or "weather" in name:
        return DeviceType.WEATHER
    return DeviceType.AUX


_MANUFACTURER_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("asi", "zwo"), "ZWO"),
    (("qhy",), "QHY"),
    (("canon",), "Canon"),
    (("nikon",), "Nikon"),
    (("celestron",), "Celestron"),
    (("skywatcher", "eqmod"), "Sky-Watcher"),
    (("playerone",), "Player One Astronomy"),
    (("touptek",), "ToupTek"),
    (("fli",), "Finger Lakes Instruments"),
    (("sbig",), "SBIG"),
    (("sx",), "Starlight Express"),
    (("apogee",), "Apogee"),
    (("moravian", "mi"), "Moravian Instruments"),
)


def extract_manufacturer(driver_name: str) -> str:
    """Manufacturer implied by a driver name, "Generic" when none applies.

    Example:
        >>> extract_manufacturer("eqmod")
        'Sky-Watcher'
    """
    name = driver_name.lower()
    for hints, manufacturer in _MANUFACTURER_RULES:
        if any(hint in name for hint in hints):
            return manufacturer
    return "Generic"


__all__ = [
    "KNOWN_THIRDPARTY_DRIVERS",
    "categorize_driver",
    "extract_manufacturer",
    "map_driver_to_equipment_type",
    "static_usb_entries",
]
