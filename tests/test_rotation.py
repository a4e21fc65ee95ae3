import numpy as np

from ladcpmerge import process_beams, records, tools

options = tools.get_options(verbose=False)
JD0 = 2459000.5


def beam_velocities(u, w, beam_angle=20.0, n_ens=5, n_bins=8):
    """
    Along-beam velocities seen by a level down-looking convex instrument in a flow of u east and w up.
    """
    s, c = np.sin(np.deg2rad(beam_angle)), np.cos(np.deg2rad(beam_angle))
    b = np.zeros((n_ens, n_bins, 4))
    b[..., 0] = u * s + w * c
    b[..., 1] = -u * s + w * c
    b[..., 2] = w * c
    b[..., 3] = w * c
    return b


def level(n):
    return np.zeros(n), np.zeros(n), np.zeros(n)


def test_level_instrument_recovers_flow():
    vel = beam_velocities(0.3, -0.8)
    earth = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, use_bin_remap=False)
    np.testing.assert_allclose(earth[..., 0], 0.3)
    np.testing.assert_allclose(earth[..., 1], 0, atol=1e-12)
    np.testing.assert_allclose(earth[..., 2], -0.8)
    np.testing.assert_allclose(earth[..., 3], 0, atol=1e-12)


def test_symmetric_beams_give_scaled_mean():
    vel = np.full((3, 6, 4), 0.25)
    earth = process_beams.beams_to_earth(vel, *level(3), 20.0, up=False)
    np.testing.assert_allclose(earth[..., 2], 0.25 / np.cos(np.deg2rad(20)))
    np.testing.assert_allclose(earth[..., :2], 0, atol=1e-12)


def test_heading_rotates_horizontal_components():
    vel = beam_velocities(0.3, 0.0)
    pitch, roll, _ = level(5)
    earth = process_beams.beams_to_earth(vel, pitch, roll, np.full(5, 90.0), 20.0, up=False, use_bin_remap=False)
    np.testing.assert_allclose(earth[..., 0], 0, atol=1e-12)
    np.testing.assert_allclose(earth[..., 1], -0.3)


def test_concave_flips_horizontal_components():
    vel = beam_velocities(0.3, -0.8)
    convex = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, convex=True, use_bin_remap=False)
    concave = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, convex=False, use_bin_remap=False)
    np.testing.assert_allclose(concave[..., 0], -convex[..., 0])
    np.testing.assert_allclose(concave[..., 2], convex[..., 2])


def test_up_and_down_vertical_have_opposite_sign():
    vel = np.full((2, 4, 4), 0.1)
    down = process_beams.beams_to_earth(vel, *level(2), 20.0, up=False)
    up = process_beams.beams_to_earth(vel, *level(2), 20.0, up=True)
    np.testing.assert_allclose(up[..., 2], -down[..., 2])


def test_missing_beam_removes_whole_bin():
    vel = beam_velocities(0.3, -0.8)
    vel[2, 3, 1] = np.nan
    earth = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, use_bin_remap=False)
    assert np.all(np.isnan(earth[2, 3, :]))
    assert np.count_nonzero(np.isnan(earth)) == 4


def test_remapping_level_instrument_keeps_bins():
    # Eight bins at 20 degrees map onto themselves when the instrument is level
    vel = beam_velocities(0.3, -0.8) * np.arange(1, 9)[None, :, None]
    remapped = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, use_bin_remap=True)
    plain = process_beams.beams_to_earth(vel, *level(5), 20.0, up=False, use_bin_remap=False)
    np.testing.assert_allclose(remapped, plain)


def test_strong_tilt_discards_bins_remapped_outside_profile():
    vel = beam_velocities(0.3, -0.8)
    pitch = np.full(5, 60.0)
    earth = process_beams.beams_to_earth(vel, pitch, np.zeros(5), np.zeros(5), 20.0, up=False)
    assert np.all(np.isnan(earth[:, :2, :]))
    assert np.all(np.isfinite(earth[:, 2:, :]))


def test_rotate_to_earth_is_identity_for_earth_data():
    ds = records.make_instrument(JD0 + np.arange(5) / 86400, beam_velocities(0.3, -0.8))
    assert process_beams.rotate_to_earth(ds, options) is ds


def test_rotate_to_earth_sets_coordinate_system():
    ds = records.make_instrument(
        JD0 + np.arange(5) / 86400,
        beam_velocities(0.3, -0.8),
        coordinate_system='beam',
    )
    earth = process_beams.rotate_to_earth(ds, tools.get_options(verbose=False, use_bin_remapping=False))
    assert earth.attrs['coordinate_system'] == 'earth'
    assert ds.attrs['coordinate_system'] == 'beam'
    np.testing.assert_allclose(earth['velocity'].values[..., 0], 0.3)


def test_rotate_bottom_track():
    bottom = beam_velocities(0.2, 0.5, n_bins=1)[:, 0, :]
    ds = records.make_instrument(
        JD0 + np.arange(5) / 86400,
        beam_velocities(0.3, -0.8),
        bottom_velocity=bottom,
        coordinate_system='beam',
    )
    ds = process_beams.rotate_bottom_track(ds, options)
    np.testing.assert_allclose(ds['bottom_velocity'].values[:, 0], 0.2)
    np.testing.assert_allclose(ds['bottom_velocity'].values[:, 2], 0.5)
    assert ds.attrs['coordinate_system'] == 'beam'
