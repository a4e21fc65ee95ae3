"""
Quality control of instrument and merged velocities. Failing samples are replaced by NaN so array shapes never change.


ladcpmerge.process_qc
--------------------------
remove_zero_records
    Replaces all-zero velocity records of narrowband instruments with NaN.
check_blank
    Warns when the blank after transmit is zero and no bins are masked.
mask_bins
    Discards velocities of user-specified bins.
apply_percent_good
    Discards bins whose 4-beam solution percent good is below threshold.
apply_error_velocity
    Discards merged velocities whose error velocity exceeds threshold.
clean_bottom_track
    Discards bottom track velocities failing the error velocity threshold or the sanity floor.
three_beam_fraction
    Fraction of valid vertical velocities computed without an error velocity (3-beam solutions).

"""

import numpy as np
from .tools import plog, pwarn


def remove_zero_records(ds):
    """
    Narrowband instruments write records in which all velocity components are zero.
    These are found as the records where the product of the components equals their sum, and replaced with NaN.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with all-zero records replaced by NaN.
    n_removed : int
        Number of (ensemble, bin) records replaced.

    """
    velocity = ds['velocity'].values.copy()
    bad = np.prod(velocity, axis=-1) == np.sum(velocity, axis=-1)
    n_removed = int(np.count_nonzero(bad))
    if n_removed > 0:
        plog('    Special problem with NB data:')
        plog(f'      replaced {n_removed} records because of all 0s')
        velocity[bad, :] = np.nan
        ds = ds.copy()
        ds['velocity'] = (['time', 'bin', 'beam'], velocity)
    return ds, n_removed


def check_blank(ds, mask, messages=None, name='down'):
    """
    A blank after transmit of 0 m contaminates the first bin with ringing. Warn if that bin is not masked.
    """
    if ds.attrs['blank'] == 0 and len(mask) == 0:
        pwarn(f'Found 0m blank length and no masking of first {name}looker bin. Recommend setting mask_{name}_bins.', messages)
        return False
    return True


def mask_bins(ds, bins):
    """
    Sets velocities of the given 1-based bins to NaN.
    """
    bins = [b for b in bins if 1 <= b <= len(ds.bin)]
    if len(bins) == 0:
        return ds
    velocity = ds['velocity'].values.copy()
    velocity[:, np.array(bins) - 1, :] = np.nan
    plog(f'    Masked bins {bins}')
    ds = ds.copy()
    ds['velocity'] = (['time', 'bin', 'beam'], velocity)
    return ds


def apply_percent_good(ds, threshold, name='down'):
    """
    Removes bins for which the percent good of the 4-beam solution is below threshold.
    Bins exactly at the threshold are kept.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset in earth coordinates.
    threshold : float
        Minimum acceptable percent good.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with failing bins set to NaN in all four velocity components.

    """
    PG = ds['percent_good'].values[:, :, 3].copy()
    ind = PG < threshold
    PG[ind] = np.nan
    PG[~ind] = 1
    if np.count_nonzero(ind) > 0:
        plog(f'    Removed {np.count_nonzero(ind)} {name}looker values because of percent good < {threshold}')
        ds = ds.copy()
        ds['velocity'] = (['time', 'bin', 'beam'], ds['velocity'].values * PG[:, :, None])
    return ds


def apply_error_velocity(profile, threshold):
    """
    Removes horizontal and vertical velocities where the absolute error velocity exceeds threshold.
    The error velocity itself is kept.


    Inputs
    ----------
    profile : xr.Dataset
        Merged profile produced by ladcpmerge.process_merge.merge_profiles().
    threshold : float
        Maximum acceptable absolute error velocity in m.s-1.


    Outputs
    -------
    profile : xr.Dataset
        Same as input with u, v and w set to NaN where the error velocity exceeds threshold.

    """
    ind = np.abs(profile['e'].values) > threshold
    plog(f'    Removed {np.count_nonzero(ind)} values because of high error velocity')
    profile = profile.copy()
    for name in ['u', 'v', 'w']:
        values = profile[name].values.copy()
        values[ind] = np.nan
        profile[name] = (profile[name].dims, values)
    return profile


def clean_bottom_track(profile, options):
    """
    Removes bottom track velocities where the bottom error velocity exceeds threshold and any bottom track
    velocity below the sanity floor.


    Inputs
    ----------
    profile : xr.Dataset
        Merged profile produced by ladcpmerge.process_merge.merge_profiles().
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    profile : xr.Dataset
        Same as input with bad bottom_velocity values set to NaN.

    """
    bvel = profile['bottom_velocity'].values.copy()
    ind = np.abs(bvel[:, 3]) > options['QC_error_velocity_threshold']
    plog(f'    Removed {np.count_nonzero(ind)} bottom values because of high error velocity')
    bvel[ind, :3] = np.nan

    ind = bvel < options['bottom_velocity_floor']
    if np.count_nonzero(ind) > 0:
        plog(f'    Removed {np.count_nonzero(ind)} bottom values below {options["bottom_velocity_floor"]}')
    bvel[ind] = np.nan

    profile = profile.copy()
    profile['bottom_velocity'] = (profile['bottom_velocity'].dims, bvel)
    return profile


def three_beam_fraction(w, e):
    """
    Fraction of finite vertical velocities which have no error velocity, i.e. come from 3-beam solutions.
    """
    n_ok = np.count_nonzero(np.isfinite(w))
    if n_ok == 0:
        return 0.0
    return np.count_nonzero(np.isnan(e) & np.isfinite(w)) / n_ok
