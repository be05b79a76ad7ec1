"""
Sandstorm Tracker - Weapon Names
Maps engine blueprint identifiers to display names
"""

import re
from typing import Dict

WEAPON_NAMES: Dict[str, str] = {
    # Rifles
    'BP_Firearm_M16A4': 'M16A4',
    'BP_Firearm_AK74': 'AK-74',
    'BP_Firearm_M4A1': 'M4A1',
    'BP_Firearm_AKM': 'AKM',
    'BP_Firearm_SCARH': 'SCAR-H',
    'BP_Firearm_G36K': 'G36K',
    'BP_Firearm_AK12': 'AK-12',
    'BP_Firearm_M16A2': 'M16A2',
    'BP_Firearm_AKS74U': 'AKS-74U',
    'BP_Firearm_Alpha_AK': 'Alpha AK',
    'BP_Firearm_VHS': 'VHS-2',

    # Marksman and sniper rifles
    'BP_Firearm_M24': 'M24 SWS',
    'BP_Firearm_Mosin': 'Mosin Nagant',
    'BP_Firearm_M110': 'M110 SASS',
    'BP_Firearm_SVD': 'SVD',
    'BP_Firearm_L96A1': 'L96A1',

    # Shotguns
    'BP_Firearm_M590A1': 'M590A1',
    'BP_Firearm_TOZ': 'TOZ-194',

    # SMGs
    'BP_Firearm_Sterling': 'Sterling L2A3',
    'BP_Firearm_UMP45': 'UMP-45',
    'BP_Firearm_MP5A2': 'MP5A2',
    'BP_Firearm_MP7': 'MP7',
    'BP_Firearm_Uzi': 'Uzi',

    # Machine guns
    'BP_Firearm_M249': 'M249 SAW',
    'BP_Firearm_PKM': 'PKM',
    'BP_Firearm_M240B': 'M240B',
    'BP_Firearm_MG3': 'MG3',

    # Pistols
    'BP_Firearm_M9': 'M9 Beretta',
    'BP_Firearm_Makarov': 'Makarov',
    'BP_Firearm_M45': 'M45A1',
    'BP_Firearm_Welrod': 'Welrod Mk II',
    'BP_Firearm_PF940': 'PF940C',

    # Launchers
    'BP_Firearm_M203': 'M203 Grenade Launcher',
    'BP_Firearm_GP25': 'GP-25 Grenade Launcher',
    'BP_Firearm_RPG7': 'RPG-7',
    'BP_Firearm_AT4': 'AT4',
    'BP_Firearm_M3MAAWS': 'M3 MAAWS',

    # Explosives and projectiles
    'BP_Projectile_Molotov': 'Molotov Cocktail',
    'BP_Projectile_Grenade_Frag': 'Frag Grenade',
    'BP_Projectile_Grenade_Smoke': 'Smoke Grenade',
    'BP_Projectile_IED': 'IED',
    'BP_Projectile_Rocket': 'Rocket',
    'BP_Projectile_40mm': '40mm Grenade',
    'BP_Projectile_Rocket_155mm': '155mm Artillery',
    'BP_Projectile_Rocket_120mm': '120mm Mortar',

    # Support
    'BP_Projectile_Mortar_HE': 'Mortar Strike',
    'BP_Projectile_Mortar_Smoke': 'Mortar Smoke',
    'BP_Projectile_Artillery_HE': 'Artillery Strike',
    'BP_Projectile_Artillery_Smoke': 'Artillery Smoke',
    'BP_Vehicle_Helicopter_Gunship': 'Attack Helicopter',
    'BP_Projectile_Hellfire': 'Hellfire Missile',
    'BP_Projectile_Airstrike': 'Air Strike',
    'BP_Projectile_Strafe': 'Strafing Run',

    # Melee
    'BP_Melee_Knife': 'Combat Knife',
    'BP_Melee_Kukri': 'Kukri',
    'BP_Melee_Machete': 'Machete',

    # Environment
    'BP_Character_Player': 'Fall Damage',
}

_PREFIX_PATTERN = re.compile(r'^(?:BP_)?(?:Firearm_|Weapon_|Melee_|Projectile_|Character_)?')
_SUFFIX_PATTERN = re.compile(r'(?:_C)?(?:_\d+)?$')


def _title_word(word: str) -> str:
    # Model designations like M16A2 or AK74 keep their case
    if any(c.isdigit() for c in word) or any(c.isupper() for c in word[1:]):
        return word
    return word.capitalize()


def normalize_weapon_name(identifier: str) -> str:
    """Return the display name for a weapon identifier. Never fails."""
    if not identifier or not identifier.strip():
        return 'Unknown'
    raw = identifier.strip()

    # Longest key wins so BP_Firearm_M240B never resolves as BP_Firearm_M24
    best = None
    for key in WEAPON_NAMES:
        if key in raw and (best is None or len(key) > len(best)):
            best = key
    if best is not None:
        return WEAPON_NAMES[best]

    name = _SUFFIX_PATTERN.sub('', raw)
    name = _PREFIX_PATTERN.sub('', name)
    words = [w for w in name.split('_') if w]
    if not words:
        return raw

    cleaned = ' '.join(_title_word(w) for w in words)
    if cleaned.startswith('ODCheckpoint '):
        return 'ODCheckpoint'
    return cleaned
