"""
Unit Tests for Weapon Name Normalization
"""

import pytest

from tracker.parsers.components.weapons import normalize_weapon_name


class TestNormalizeWeaponName:
    """Test weapon identifier to display name mapping"""

    @pytest.mark.parametrize('raw, expected', [
        ('BP_Firearm_M16A4_C_2147481419', 'M16A4'),
        ('BP_Projectile_Mortar_HE_C_2147480348', 'Mortar Strike'),
        ('BP_Character_Player_C_2147481498', 'Fall Damage'),
        ('BP_Melee_Kukri_C_2147470001', 'Kukri'),
    ])
    def test_known_weapons(self, raw, expected):
        assert normalize_weapon_name(raw) == expected

    def test_longest_key_wins(self):
        """Test that a longer table key beats a shorter one it contains"""
        assert normalize_weapon_name('BP_Projectile_Rocket_120mm_C_1') == '120mm Mortar'
        assert normalize_weapon_name('BP_Projectile_Rocket_C_1') == 'Rocket'

    def test_unknown_weapon_is_cleaned(self):
        """Test the fallback strips prefix and instance suffix"""
        assert normalize_weapon_name('BP_Firearm_Flare_Gun_C_2147000000') == 'Flare Gun'

    def test_unknown_weapon_keeps_model_designation(self):
        assert normalize_weapon_name('BP_Firearm_XM8A1_C_12') == 'XM8A1'

    def test_checkpoint_objective(self):
        assert normalize_weapon_name('ODCheckpoint_A_C_2147480000') == 'ODCheckpoint'

    @pytest.mark.parametrize('raw', ['', '   ', None])
    def test_empty_input(self, raw):
        """Test that empty input never fails"""
        assert normalize_weapon_name(raw) == 'Unknown'
