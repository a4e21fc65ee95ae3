"""
Merge up- and down-looking instruments into one profile ordered by depth and compute diagnostics of the merged profile.


ladcpmerge.process_merge
--------------------------
merge_profiles
    Stacks the up-looker bins (reversed) above the down-looker bins and merges all other channels.
surface_from_bottom_track
    Distance to the surface from the bottom track ranges of the up-looker.
surface_from_amplitude
    Distance to the surface from the echo amplitude maximum of the up-looker.
detect_surface
    Selects between the two surface detection methods depending on available data.
check_three_beam
    Warns when many velocities of an instrument are 3-beam solutions.
add_diagnostics
    Tilt, tilt rate, weights, single ping error and instrument range of the merged profile.

"""

import warnings
import numpy as np
import gsw
from .records import bin_distances, fixed_leader, instrument_id, VARIABLE_LEADER
from .process_qc import three_beam_fraction
from .tools import plog, pwarn, nantrim_mean
import xarray as xr

warnings.filterwarnings(action='ignore', message='All-NaN slice encountered')
warnings.filterwarnings(action='ignore', message='Mean of empty slice')
warnings.filterwarnings(action='ignore', message='Degrees of freedom <= 0 for slice.')

COMPONENTS = ['u', 'v', 'w', 'e']


"""
Surface detection
"""
def surface_from_bottom_track(ranges):
    """
    Median over beams of the up-looker bottom track ranges, which see the sea surface.
    Returns None if there are not enough ranges to use.
    """
    hs = np.nanmedian(ranges, axis=1)
    if np.count_nonzero(np.isfinite(hs)) > 1 and np.nansum(hs) > 0:
        return hs
    return None


def surface_from_amplitude(target_strength, z, threshold, bin_median=None):
    """
    Distance to the surface as the bin of maximum echo amplitude above the median amplitude of each bin.


    Inputs
    ----------
    target_strength : np.array
        (ensemble, bin) median beam echo amplitude of the up-looker.
    z : np.array
        Distance of the bins from the transducer.
    threshold : float
        Minimum amplitude above the bin median for a detection.
    bin_median : np.array, optional
        Median amplitude of each bin over the whole record. Taken from target_strength if None.


    Outputs
    -------
    hs : np.array
        Distance to the surface for each ensemble. NaN if the maximum is weak or in the first or last bin.

    """
    if bin_median is None:
        bin_median = np.nanmedian(target_strength, axis=0)
    anomaly = target_strength - bin_median[None, :]
    hs = np.full(np.shape(anomaly)[0], np.nan)
    _gd = np.any(np.isfinite(anomaly), axis=1)
    if np.count_nonzero(_gd) == 0:
        return hs
    peak = np.nanargmax(anomaly[_gd, :], axis=1)
    amplitude = np.nanmax(anomaly[_gd, :], axis=1)
    found = np.asarray(z, dtype=float)[peak]
    found[amplitude < threshold] = np.nan
    found[(peak == 0) | (peak == np.shape(anomaly)[1] - 1)] = np.nan
    hs[_gd] = found
    return hs


def detect_surface(up, i_up, threshold):
    """
    Distance to the surface seen by the up-looker. Bottom track ranges are preferred, echo amplitude is used otherwise.
    """
    hs = surface_from_bottom_track(up['bottom_range'].values[i_up, :])
    if hs is not None:
        return hs
    ts = up['target_strength'].values
    if np.count_nonzero(np.isfinite(ts)) > 1:
        plog('    Using target strength of up looking ADCP to find surface')
        return surface_from_amplitude(ts[i_up, :], bin_distances(up), threshold, np.nanmedian(ts, axis=0))
    return np.full(len(i_up), np.nan)


"""
Merging
"""
def merge_profiles(down, up=None, i_down=None, i_up=None, options=None):
    """
    Merges up- and down-looking instruments into one profile.
    The up-looker bins are reversed and placed before the down-looker bins so that bins are ordered by depth.


    Inputs
    ----------
    down, up : xr.Dataset
        Quality controlled instrument datasets in earth coordinates, with target_strength and correlation medians.
        up can be None for a single instrument cast.
    i_down, i_up : np.array
        Indices of the joint ensembles of both instruments. All ensembles are used if None.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    profile : xr.Dataset
        Merged profile with dimensions bin, ensemble and instrument.
        The z coordinate is the distance from the rosette, positive downwards.

    """
    if i_down is None:
        i_down = np.arange(len(down.time))
    instruments = [(down, i_down, 'down')]
    if up is not None:
        if i_up is None:
            i_up = np.arange(len(up.time))
        instruments = [(down, i_down, 'down'), (up, i_up, 'up')]
    n_ens = len(i_down)

    def __stack(name, component=None):
        parts = []
        if up is not None:
            x = up[name].values[i_up]
            if component is not None:
                x = x[:, :, component]
            parts.append(x[:, ::-1])
        x = down[name].values[i_down]
        if component is not None:
            x = x[:, :, component]
        parts.append(x)
        return np.concatenate(parts, axis=1).T

    z = bin_distances(down)
    looking = ['down'] * len(z)
    bins = list(np.arange(1, len(z) + 1))
    if up is not None:
        zu = bin_distances(up)
        z = np.concatenate([-zu[::-1], z])
        looking = ['up'] * len(zu) + looking
        bins = list(np.arange(len(zu), 0, -1)) + bins

    data_vars = {}
    for idx, name in enumerate(COMPONENTS):
        data_vars[name] = (['bin', 'ensemble'], __stack('velocity', idx))
    data_vars['target_strength'] = (['bin', 'ensemble'], __stack('target_strength'))
    data_vars['correlation'] = (['bin', 'ensemble'], __stack('correlation_median'))

    for name in VARIABLE_LEADER:
        data_vars[name] = (['instrument', 'ensemble'], np.stack([ds[name].values[idx] for ds, idx, _ in instruments]))

    ranges = down['bottom_range'].values[i_down, :]
    data_vars['bottom_range'] = ('ensemble', np.nanmedian(ranges, axis=1))
    data_vars['bottom_range_beams'] = (['ensemble', 'beam'], ranges)
    data_vars['bottom_velocity'] = (['ensemble', 'component'], down['bottom_velocity'].values[i_down, :])

    if up is not None:
        threshold = 20 if options is None else options['surface_amplitude_threshold']
        data_vars['surface_range'] = ('ensemble', detect_surface(up, i_up, threshold))

    # Beams retained separately
    for ds, idx, looker in instruments:
        for name in ['target_strength_beams', 'correlation_beams', 'percent_good_beams']:
            if name in ds:
                data_vars[f'{name}_{looker}'] = (
                    ['ensemble', f'bin_{looker}', f'{name}_{looker}_beam'],
                    ds[name].values[idx],
                )

    profile = xr.Dataset(
        data_vars=data_vars,
        coords={
            'z': ('bin', z),
            'looking': ('bin', looking),
            'instrument_bin': ('bin', np.array(bins, dtype=int)),
            'ensemble': ('ensemble', np.arange(n_ens)),
            'instrument': ('instrument', [looker for _, _, looker in instruments]),
            'component': ('component', COMPONENTS),
            'beam': ('beam', [1, 2, 3, 4]),
        },
    )

    fd = fixed_leader(down)
    profile.attrs = {
        'bin_length': fd.bin_length,
        'n_bins': fd.n_bins,
        'blank': fd.blank,
        'first_bin_distance': fd.first_bin_distance,
    }
    for ds, idx, looker in instruments:
        fl = fixed_leader(ds)
        profile.attrs[f'{looker}_serial'] = list(fl.serial)
        profile.attrs[f'{looker}_instrument_id'] = instrument_id(fl.serial)
        profile.attrs[f'{looker}_pings_per_ensemble'] = fl.pings_per_ensemble
        profile.attrs[f'{looker}_n_ensembles'] = len(ds.time)
        profile.attrs[f'{looker}_beam_angle'] = fl.beam_angle
        profile.attrs[f'{looker}_frequency'] = fl.frequency
        profile.attrs[f'{looker}_family'] = fl.family
    profile.attrs['bottom_track_used'] = int(np.count_nonzero(np.isfinite(down['bottom_velocity'].values)) > 0)
    profile.attrs['n_pings_total'] = [
        profile.attrs[f'{looker}_pings_per_ensemble'] * profile.attrs[f'{looker}_n_ensembles'] for _, _, looker in instruments
    ]
    plog(f'    Merged {len(z)} bins and {n_ens} ensembles')
    return profile


"""
Diagnostics
"""
def check_three_beam(profile, limit, messages=None):
    """
    Warns when more than limit of the valid vertical velocities of an instrument have no error velocity.


    Outputs
    -------
    fractions : dict
        Fraction of 3-beam solutions of each instrument.

    """
    fractions = {}
    for looker in profile.instrument.values:
        _gd = profile.looking.values == looker
        fraction = three_beam_fraction(profile['w'].values[_gd, :], profile['e'].values[_gd, :])
        fractions[looker] = fraction
        if fraction > limit:
            pwarn(f'Detected {int(fraction * 100)} %  3 BEAM solutions {looker}-looking', messages)
    return fractions


def _single_ping_error(w, beam_angle, pings_per_ensemble):
    """
    Single ping velocity error from the spread of vertical velocity over bins 2 to 6 of an instrument.
    w is ordered from the transducer outwards.
    """
    n_iz = min(np.shape(w)[0], 6)
    sw = np.nanstd(w[1:n_iz, :], axis=0, ddof=1)
    sw = np.nanmedian(sw[sw > 0]) if np.count_nonzero(sw > 0) > 0 else np.nan
    return float(sw / np.tan(np.deg2rad(beam_angle)) * np.sqrt(pings_per_ensemble))


def _instrument_range(ds):
    """
    Distance from the transducer at which the median correlation of each beam falls to 30% of its first bin maximum.
    """
    cm = np.nanmedian(ds['correlation'].values, axis=0)
    z = bin_distances(ds)
    target = np.nanmax(cm[0, :]) * 0.3
    out = []
    for n in range(4):
        distance = np.abs(cm[:, n] - target)
        out.append(float(z[np.nanargmin(distance)]) if np.any(np.isfinite(distance)) else np.nan)
    return out


def _change_rate(x):
    """
    Mean absolute difference of each sample to its neighbours. The series is padded with 0 at both ends.
    """
    back = np.abs(np.diff(x, prepend=0))
    forward = np.abs(np.diff(x, append=0))
    return (back + forward) / 2


def add_diagnostics(profile, instruments, options):
    """
    Adds diagnostics to the merged profile.


    Inputs
    ----------
    profile : xr.Dataset
        Merged profile.
    instruments : dict
        Instrument datasets keyed 'down' and optionally 'up', as used in the merge.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    profile : xr.Dataset
        Same as input with weight, tilt, tilt_rate and instrument_depth variables, and single ping error,
        range and trimmed transmit attributes for each instrument.

    """
    profile = profile.copy()

    cm = profile['correlation'].values
    profile['weight'] = (['bin', 'ensemble'], cm / np.nanmedian(np.nanmax(cm, axis=0)))

    pitch = profile['pitch'].values[0, :]
    roll = profile['roll'].values[0, :]
    tilt = np.arcsin(np.clip(np.sqrt(np.sin(np.deg2rad(pitch)) ** 2 + np.sin(np.deg2rad(roll)) ** 2), 0, 1))
    profile['tilt'] = ('ensemble', np.rad2deg(tilt))
    profile['tilt_rate'] = ('ensemble', np.sqrt(_change_rate(roll) ** 2 + _change_rate(pitch) ** 2))

    profile['instrument_depth'] = (
        ['instrument', 'ensemble'],
        -gsw.z_from_p(profile['pressure'].values, options['latitude']),
    )

    for idx, looker in enumerate(profile.instrument.values):
        ds = instruments[looker]
        _gd = profile.looking.values == looker
        w = profile['w'].values[_gd, :]
        if looker == 'up':
            w = w[::-1, :]
        profile.attrs[f'{looker}_single_ping_error'] = _single_ping_error(
            w, ds.attrs['beam_angle'], ds.attrs['pings_per_ensemble']
        )
        profile.attrs[f'{looker}_range'] = _instrument_range(ds)
        for name in ['xmit_current', 'xmit_voltage', 'internal_temperature']:
            profile.attrs[f'{looker}_{name}'] = nantrim_mean(profile[name].values[idx, :], 0.25)

    return profile
