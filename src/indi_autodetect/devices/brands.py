"""Known equipment brands for raw USB matching.

The scanner uses this table before the knowledge base is consulted: it is
enough to decide which installed drivers belong to a freshly plugged
device, which is all a control-server restart needs.

Brands are checked in table order. Within a brand, a vendor id match or
any product pattern found in the description, manufacturer or product
string selects it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from indi_autodetect.devices.types import UsbDevice


@dataclass(frozen=True)
class BrandInfo:
    """One equipment brand.

    Attributes:
        name: Display name ("ZWO").
        vendor_ids: USB vendor ids owned by the brand.
        product_patterns: Lower-case substrings identifying the brand in
            lsusb strings.
        driver_patterns: Lower-case substrings of its driver executables.
        package_names: Packages providing the brand's drivers.
        description: Human-readable description.
    """

    name: str
    vendor_ids: tuple[str, ...]
    product_patterns: tuple[str, ...]
    driver_patterns: tuple[str, ...]
    package_names: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""


KNOWN_BRANDS: tuple[BrandInfo, ...] = (
    BrandInfo(
        name="ZWO",
        vendor_ids=("03c3",),
        product_patterns=("asi", "zwo"),
        driver_patterns=("asi", "zwo"),
        package_names=("indi-asi", "libasi", "asi-camera"),
        description="ZWO ASI Cameras",
    ),
    BrandInfo(
        name="QHYCCD",
        vendor_ids=("1618",),
        product_patterns=("qhy",),
        driver_patterns=("qhy",),
        package_names=("indi-qhy", "libqhy"),
        description="QHY CCD Cameras",
    ),
    BrandInfo(
        name="Celestron",
        vendor_ids=("0525",),
        product_patterns=("celestron",),
        driver_patterns=("celestron",),
        package_names=("indi-celestron",),
        description="Celestron Telescopes",
    ),
    BrandInfo(
        name="Player One",
        vendor_ids=("a0a0",),
        product_patterns=(
            "player",
            "one",
            "neptune",
            "mars",
            "uranus",
            "saturn",
            "apollo",
            "ceres",
            "poseidon",
        ),
        driver_patterns=("playerone",),
        package_names=("indi-playerone", "libplayerone", "libplayeronecamera2"),
        description="Player One Astronomy Cameras",
    ),
    BrandInfo(
        name="SBIG",
        vendor_ids=("0d56",),
        product_patterns=("sbig",),
        driver_patterns=("sbig",),
        package_names=("indi-sbig", "libsbig"),
        description="SBIG CCD Cameras",
    ),
    BrandInfo(
        name="Starlight Xpress",
        vendor_ids=("1278",),
        product_patterns=("starlight", "sxv", "lodestar"),
        driver_patterns=("sx",),
        package_names=("indi-sx",),
        description="Starlight Xpress Cameras and Filter Wheels",
    ),
    BrandInfo(
        name="Pegasus Astro",
        vendor_ids=("0483",),
        product_patterns=("pegasus", "upb", "ppb"),
        driver_patterns=("pegasus",),
        package_names=("indi-pegasus",),
        description="Pegasus Astro Power Boxes and Focusers",
    ),
)

_ZWO_MODEL = re.compile(r"asi\s*(\d+\w*)", re.IGNORECASE)
_QHY_MODEL = re.compile(r"qhy\s*(\d+\w*)", re.IGNORECASE)
_PLAYER_ONE_MODEL = re.compile(
    r"(neptune|mars|uranus|saturn|apollo|ceres|poseidon)[-\s]*[cm]?", re.IGNORECASE
)


def _search_texts(device: UsbDevice) -> tuple[str, str, str]:
    return (
        device.description.lower(),
        (device.manufacturer or "").lower(),
        (device.product or "").lower(),
    )


def detect_brand(
    device: UsbDevice, brands: tuple[BrandInfo, ...] = KNOWN_BRANDS
) -> BrandInfo | None:
    """Return the first brand matching ``device``, or None.

    Example:
        >>> dev = UsbDevice("001", "004", "03c3", "294a", "ZWO ASI294MC Pro")
        >>> detect_brand(dev).name
        'ZWO'
    """
    texts = _search_texts(device)
    for brand in brands:
        if device.vendor_id in brand.vendor_ids:
            return brand
        for pattern in brand.product_patterns:
            if any(pattern in text for text in texts):
                return brand
    return None


def extract_model(device: UsbDevice, brand: BrandInfo) -> str | None:
    """Extract a model name for brands with a known naming scheme.

    Example:
        >>> dev = UsbDevice("001", "004", "03c3", "294a", "ZWO ASI294MC Pro")
        >>> extract_model(dev, KNOWN_BRANDS[0])
        'ASI 294mc'
    """
    combined = " ".join(_search_texts(device))
    if brand.name == "ZWO":
        match = _ZWO_MODEL.search(combined)
        return f"ASI {match.group(1)}" if match else None
    if brand.name == "QHYCCD":
        match = _QHY_MODEL.search(combined)
        return f"QHY {match.group(1)}" if match else None
    if brand.name == "Player One":
        match = _PLAYER_ONE_MODEL.search(combined)
        return match.group(0).upper() if match else None
    return None


def matching_drivers_for_brand(
    brand: BrandInfo, installed_drivers: list[str]
) -> list[str]:
    """Installed drivers containing any of the brand's driver patterns.

    Pattern order is kept and duplicates are dropped.
    """
    matches: list[str] = []
    for pattern in brand.driver_patterns:
        for driver in installed_drivers:
            if pattern in driver.lower() and driver not in matches:
                matches.append(driver)
    return matches


def matching_drivers_by_description(
    description: str, installed_drivers: list[str]
) -> list[str]:
    """Fallback match on description tokens of three or more characters.

    Example:
        >>> matching_drivers_by_description(
        ...     "Future Technology Devices FT232 Serial (UART) IC",
        ...     ["indi_asi_ccd", "indi_ft232_focuser"],
        ... )
        ['indi_ft232_focuser']
    """
    tokens = [t for t in re.split(r"[^a-z0-9]+", description.lower()) if len(t) >= 3]
    if not tokens:
        return []
    return [
        driver for driver in installed_drivers
        if any(token in driver.lower() for token in tokens)
    ]


__all__ = [
    "KNOWN_BRANDS",
    "BrandInfo",
    "detect_brand",
    "extract_model",
    "matching_drivers_by_description",
    "matching_drivers_for_brand",
]
