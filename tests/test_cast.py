import numpy as np
import pandas as pd
import pytest

from ladcpmerge import process_cast, records, tools

JD0 = 2459000.5
SECOND = 1 / 86400


def cast_velocity(w, n_bins=8):
    velocity = np.zeros((len(w), n_bins, 4))
    velocity[:, :, 0] = 0.1
    velocity[:, :, 1] = -0.2
    velocity[:, :, 2] = np.asarray(w)[:, None]
    return velocity


def rosette_w(n, seed=0):
    rng = np.random.default_rng(seed)
    return rng.normal(size=n)


def test_single_instrument_cast():
    w = rosette_w(50)
    velocity = cast_velocity(w)
    velocity[10, 3, 3] = 0.8
    velocity[11, 4, 3] = 0.4
    down = records.make_instrument(JD0 + np.arange(50) * SECOND, velocity, blank=4.0, pressure=np.linspace(0, 50, 50))

    profile, backup = process_cast.process(down, options=tools.get_options(verbose=False))

    assert backup == {}
    np.testing.assert_array_equal(profile.instrument.values, ['down'])
    assert profile.sizes['ensemble'] == 50
    assert profile.sizes['bin'] == 8
    assert all(np.isnan(profile[name].values[3, 10]) for name in ['u', 'v', 'w'])
    assert profile['e'].values[3, 10] == 0.8
    assert profile['u'].values[4, 11] == 0.1
    assert profile.attrs['lag'] == 0
    assert np.isnan(profile.attrs['lag_correlation'])
    assert profile.attrs['start_time'] == pytest.approx(JD0)
    assert profile.attrs['end_time'] == pytest.approx(JD0 + 49 * SECOND)
    assert profile.attrs['warnings'] == []
    assert pd.Timestamp(profile['datetime'].values[0, 0]).year == 2020


def test_default_options():
    down = records.make_instrument(JD0 + np.arange(10) * SECOND, cast_velocity(rosette_w(10)), blank=4.0)
    profile, _ = process_cast.process(down)
    assert profile.sizes['ensemble'] == 10


def test_two_instrument_cast_with_lag():
    n, shift = 120, 4
    s = rosette_w(n + shift)
    down = records.make_instrument(JD0 + np.arange(n) * SECOND, cast_velocity(s[shift:]), blank=4.0)
    up = records.make_instrument(
        JD0 + np.arange(n) * SECOND,
        cast_velocity(s[:n], n_bins=6),
        blank=4.0,
        orientation='up',
    )
    profile, _ = process_cast.process(down, up, tools.get_options(verbose=False))

    assert profile.attrs['lag'] == shift
    assert profile.attrs['lag_correlation'] == pytest.approx(1.0)
    assert profile.sizes['ensemble'] == n - shift
    assert profile.sizes['bin'] == 14
    assert np.all(np.diff(profile.z.values) >= 0)
    np.testing.assert_allclose(profile['w'].values[0, :], profile['w'].values[-1, :])
    assert profile.attrs['warnings'] == []


def test_level_cast_keeps_all_samples():
    down = records.make_instrument(JD0 + np.arange(30) * SECOND, cast_velocity(rosette_w(30)), blank=4.0)
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False, QC_percent_good_threshold=100))
    assert profile.sizes['bin'] == 8
    for name in ['u', 'v', 'w', 'e']:
        assert np.all(np.isfinite(profile[name].values))


def test_two_instrument_cast_with_noisy_lag():
    n, shift = 200, 5
    s = rosette_w(n + shift)
    noise = np.random.default_rng(7).normal(size=n) * 0.33
    down = records.make_instrument(JD0 + np.arange(n) * SECOND, cast_velocity(s[shift:]), blank=4.0)
    up = records.make_instrument(
        JD0 + np.arange(n) * SECOND,
        cast_velocity(s[:n] + noise, n_bins=6),
        blank=4.0,
        orientation='up',
    )
    profile, _ = process_cast.process(down, up, tools.get_options(verbose=False))
    assert profile.attrs['lag'] == 5
    assert 0.9 <= profile.attrs['lag_correlation'] <= 1
    assert profile.sizes['ensemble'] == n - 5
    np.testing.assert_array_equal(profile.looking.values, ['up'] * 6 + ['down'] * 8)


def test_bottom_track_sentinels():
    bottom = np.full((20, 4), 0.05)
    bottom[::10, :] = -32.768
    down = records.make_instrument(
        JD0 + np.arange(20) * SECOND, cast_velocity(rosette_w(20)), bottom_velocity=bottom, blank=4.0
    )
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False))
    bvel = profile['bottom_velocity'].values
    assert np.all(np.isnan(bvel[::10, :]))
    assert np.count_nonzero(np.isnan(bvel)) == 8
    np.testing.assert_allclose(bvel[1:10], 0.05)


def test_two_instrument_cast_with_large_lag_warns():
    n, shift = 120, 25
    s = rosette_w(n + shift)
    down = records.make_instrument(JD0 + np.arange(n) * SECOND, cast_velocity(s[shift:]), blank=4.0)
    up = records.make_instrument(JD0 + np.arange(n) * SECOND, cast_velocity(s[:n]), blank=4.0, orientation='up')
    profile, _ = process_cast.process(down, up, tools.get_options(verbose=False))
    assert profile.attrs['lag'] == shift
    assert len(profile.attrs['warnings']) == 1


def test_up_down_distance():
    w = rosette_w(30)
    down = records.make_instrument(JD0 + np.arange(30) * SECOND, cast_velocity(w, n_bins=3), blank=4.0)
    up = records.make_instrument(
        JD0 + np.arange(30) * SECOND, cast_velocity(w, n_bins=3), blank=4.0, orientation='up'
    )
    profile, _ = process_cast.process(down, up, tools.get_options(verbose=False, up_down_distance=2))
    np.testing.assert_allclose(profile.z.values, [-30, -22, -14, 12, 20, 28])


def test_high_frequency_cast_is_averaged():
    down = records.make_instrument(
        JD0 + np.arange(20) * SECOND,
        cast_velocity(rosette_w(20), n_bins=12),
        bin_length=2.0,
        blank=1.0,
        frequency=1200,
    )
    profile, backup = process_cast.process(down, options=tools.get_options(verbose=False))
    assert profile.sizes['bin'] == 3
    assert profile.attrs['bin_length'] == 8.0
    assert backup['down'].sizes['bin'] == 12
    np.testing.assert_allclose(profile['v'].values, -0.2)


def test_beam_frame_high_frequency_keeps_beam_backup():
    down = records.make_instrument(
        JD0 + np.arange(20) * SECOND,
        np.full((20, 12, 4), 0.1),
        blank=1.0,
        frequency=1200,
        coordinate_system='beam',
    )
    _, backup = process_cast.process(down, options=tools.get_options(verbose=False))
    assert backup['down_beam'].attrs['coordinate_system'] == 'beam'
    assert backup['down'].attrs['coordinate_system'] == 'earth'


def test_error_velocity_and_bottom_track():
    bottom = np.zeros((10, 4))
    bottom[2, 3] = 0.9
    bottom[3, 0] = -32.768
    down = records.make_instrument(
        JD0 + np.arange(10) * SECOND,
        cast_velocity(rosette_w(10)),
        bottom_velocity=bottom,
        bottom_range=np.full((10, 4), 150.0),
        blank=4.0,
    )
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False))
    bvel = profile['bottom_velocity'].values
    assert np.all(np.isnan(bvel[2, :3]))
    assert np.isnan(bvel[3, 0])
    assert np.all(np.isfinite(bvel[4]))
    assert profile.attrs['bottom_track_used'] == 1
    np.testing.assert_allclose(profile['bottom_range'].values, 150)
    assert len(profile.attrs['warnings']) == 1


def test_missing_time_dropped():
    jd = JD0 + np.arange(10) * SECOND
    jd[4] = np.nan
    down = records.make_instrument(jd, cast_velocity(rosette_w(10)), blank=4.0)
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False))
    assert profile.sizes['ensemble'] == 9
    assert np.all(np.isfinite(profile['julian_day'].values))


def test_clear_pressure():
    down = records.make_instrument(
        JD0 + np.arange(10) * SECOND, cast_velocity(rosette_w(10)), blank=4.0, pressure=np.full(10, 300.0)
    )
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False, clear_pressure=True))
    np.testing.assert_allclose(profile['pressure'].values, 0)
    assert np.all(profile['instrument_depth'].values > 250)


def test_blank_warning():
    down = records.make_instrument(JD0 + np.arange(10) * SECOND, cast_velocity(rosette_w(10)), blank=0.0)
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False))
    assert len(profile.attrs['warnings']) == 1
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False, mask_down_bins=[1]))
    assert profile.attrs['warnings'] == []
    assert np.all(np.isnan(profile['u'].values[0]))


def test_year_1900_requires_correction():
    jd_1900 = pd.Timestamp('1900-06-01').to_julian_date() + np.arange(10) * SECOND
    down = records.make_instrument(jd_1900, cast_velocity(rosette_w(10)), blank=4.0, family='narrowband')
    with pytest.raises(ValueError):
        process_cast.process(down, options=tools.get_options(verbose=False))

    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False, correct_year=2021))
    times = pd.DatetimeIndex(profile['datetime'].values[0])
    assert np.all(times.year == 2021)
    assert np.all(times.month == 6)
    assert profile.attrs['start_time'] == pytest.approx(pd.Timestamp('2021-06-01').to_julian_date())
    assert len(profile.attrs['warnings']) == 1


def test_narrowband_zero_records():
    velocity = cast_velocity(rosette_w(10))
    velocity[5, 2, :] = 0
    down = records.make_instrument(JD0 + np.arange(10) * SECOND, velocity, blank=4.0, family='narrowband')
    profile, _ = process_cast.process(down, options=tools.get_options(verbose=False))
    assert np.isnan(profile['u'].values[2, 5])
    assert len(profile.attrs['warnings']) == 1


def test_missing_file_is_fatal(tmp_path):
    with pytest.raises(FileNotFoundError):
        process_cast.process(str(tmp_path / 'missing.nc'))
    down = records.make_instrument(JD0 + np.arange(10) * SECOND, cast_velocity(rosette_w(10)), blank=4.0)
    with pytest.raises(FileNotFoundError):
        process_cast.process(down, str(tmp_path / 'missing_up.nc'))


def test_load_from_netcdf(tmp_path):
    down = records.make_instrument(
        JD0 + np.arange(20) * SECOND,
        cast_velocity(rosette_w(20)),
        blank=4.0,
        serial=(1, 2, 3, 4, 5, 6, 7, 8),
    )
    down.isel(time=slice(0, 12)).to_netcdf(tmp_path / 'down_000.nc')
    down.isel(time=slice(12, 20)).to_netcdf(tmp_path / 'down_001.nc')

    loaded, multiple_files = records.load_instrument(tmp_path / 'down_*.nc')
    assert multiple_files
    assert loaded.sizes['time'] == 20
    assert records.fixed_leader(loaded) == records.fixed_leader(down)

    profile, _ = process_cast.process(str(tmp_path / 'down_*.nc'), options=tools.get_options(verbose=False))
    assert profile.sizes['ensemble'] == 20
    assert profile.attrs['down_serial'] == [1, 2, 3, 4, 5, 6, 7, 8]


def test_day_of_year_time_base_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        records.make_instrument(150.0 + np.arange(5) * SECOND, cast_velocity(rosette_w(5)))

    down = records.make_instrument(JD0 + np.arange(5) * SECOND, cast_velocity(rosette_w(5)), blank=4.0)
    down['julian_day'] = ('time', 150.0 + np.arange(5) * SECOND)
    with pytest.raises(ValueError):
        process_cast.process(down, options=tools.get_options(verbose=False))
    down.to_netcdf(tmp_path / 'down.nc')
    with pytest.raises(ValueError):
        records.load_instrument(tmp_path / 'down.nc')
