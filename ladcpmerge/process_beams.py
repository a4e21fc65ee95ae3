"""
Rotate RDI beam velocities into earth coordinates using the attitude of the instrument.
Hard wired for LADCP systems with a fixed attitude sensor and 4 Janus beams.


ladcpmerge.process_beams
--------------------------
rotate_to_earth
    Converts the velocities of an instrument dataset from beam to earth coordinates.
rotate_bottom_track
    Converts bottom track velocities from beam to earth coordinates.
beams_to_earth
    Vectorised beam to earth transform of a (ensemble, bin, beam) velocity array.
_attitude
    Effective trigonometric terms of heading, pitch and roll.
_remap_bins
    Determines the bin of each beam that lies at the depth of each bin of an untilted instrument.
_beams_to_XYZ
    Transforms beam velocities into instrument coordinates.
_XYZ_to_ENU
    Rotates instrument coordinates into east, north and up.

Notes
-------
The transform treats every ensemble independently, so ensembles can be processed in any order.
A bin is NaN in all components if any beam is missing or if any remapped bin falls outside of the profile.

"""

import warnings
import numpy as np
from .tools import plog

warnings.filterwarnings(action='ignore', message='invalid value encountered in arcsin')
warnings.filterwarnings(action='ignore', message='invalid value encountered in sqrt')

sind = lambda x : np.sin(np.deg2rad(x))
cosd = lambda x : np.cos(np.deg2rad(x))


def _attitude(pitch, roll, heading):
    """
    Trigonometric terms of the attitude for the fixed sensor case.
    The tilt sensor measures pitch in a frame that is rolled, so pitch is corrected for roll.


    Inputs
    ----------
    pitch, roll, heading : np.array
        Attitude of each ensemble in degrees.


    Outputs
    -------
    CP, SP, CR, SR, CH, SH : np.array
        Cosine and sine of the effective pitch, roll and heading.

    """
    RR = np.deg2rad(roll)
    KA = np.sqrt(1.0 - (sind(pitch) * sind(roll)) ** 2)
    PP = np.arcsin(sind(pitch) * cosd(roll) / KA)
    HH = np.deg2rad(heading)
    return np.cos(PP), np.sin(PP), np.cos(RR), np.sin(RR), np.cos(HH), np.sin(HH)


def _remap_bins(CP, SP, CR, SR, n_bins, beam_angle, up, use_bin_remap=True):
    """
    Determines for each ensemble, bin and beam the bin of that beam which is found at the same depth
    as the bin of an untilted instrument.


    Outputs
    -------
    J : np.array
        (ensemble, bin, beam) 0-based bin indices, only meaningful where valid.
    valid : np.array
        (ensemble, bin) True if all four remapped bins lie within the profile.

    """
    n_ens = len(CP)
    IB = np.arange(1, n_bins + 1)
    if not use_bin_remap:
        J = np.broadcast_to(IB[None, :, None], (n_ens, n_bins, 4)) - 1
        return J, np.ones((n_ens, n_bins), dtype=bool)

    if up:
        ZSG = np.array([1, -1, 1, -1])
    else:
        ZSG = np.array([1, -1, -1, 1])

    M1 = -SR * CP
    M2 = SP
    M3 = CP * CR

    # Scale factor transforming depths in the tilted frame to depths in a fixed frame
    M = np.stack([M1, M1, M2, M2], axis=-1)
    SC = M3[:, None] * cosd(beam_angle) + ZSG[None, :] * M * sind(beam_angle)

    J = IB[None, :, None] * SC[:, None, :] + 0.5
    finite = np.isfinite(J)
    J = np.trunc(np.where(finite, J, 0)).astype(int)
    valid = np.all(finite & (J > 0) & (J <= n_bins), axis=-1)
    return np.clip(J, 1, n_bins) - 1, valid


def _beams_to_XYZ(b1, b2, b3, b4, beam_angle, up, convex=True):
    """
    Coordinate transform that converts beam velocities to instrument relative velocities X, Y, Z and error velocity.
    """
    VXS = 1 / (2 * sind(beam_angle))
    VYS = VXS
    VZS = 1 / (4 * cosd(beam_angle))
    VES = VZS

    if convex:
        if up:
            X = VXS * (-b1 + b2)
            Y = VYS * (-b3 + b4)
            Z = VZS * (-b1 - b2 - b3 - b4)
        else:
            X = VXS * (b1 - b2)
            Y = VYS * (-b3 + b4)
            Z = VZS * (b1 + b2 + b3 + b4)
    else:
        if up:
            X = VXS * (b1 - b2)
            Y = VYS * (b3 - b4)
            Z = VZS * (-b1 - b2 - b3 - b4)
        else:
            X = VXS * (-b1 + b2)
            Y = VYS * (b3 - b4)
            Z = VZS * (b1 + b2 + b3 + b4)
    E = VES * (b1 + b2 - b3 - b4)
    return X, Y, Z, E


def _XYZ_to_ENU(X, Y, Z, CP, SP, CR, SR, CH, SH):
    """
    Rotates instrument relative velocities X, Y, Z into east, north, up using the heading, pitch, roll rotation matrix.
    """
    E = X * (CH * CR + SH * SR * SP) + Y * SH * CP + Z * (CH * SR - SH * CR * SP)
    N = -X * (SH * CR - CH * SR * SP) + Y * CH * CP - Z * (SH * SR + CH * SP * CR)
    U = -X * (SR * CP) + Y * SP + Z * (CP * CR)
    return E, N, U


def beams_to_earth(velocity, pitch, roll, heading, beam_angle, up, convex=True, use_bin_remap=True):
    """
    Converts beam velocities into earth velocities, correcting bin depths for the tilt of the instrument.


    Inputs
    ----------
    velocity : np.array
        (ensemble, bin, beam) along-beam velocities.
    pitch, roll, heading : np.array
        Attitude of each ensemble in degrees.
    beam_angle : float
        Angle of the beams from the instrument axis in degrees.
    up : bool
        True for an upward-looking instrument.
    convex : bool
        True for a convex transducer head.
    use_bin_remap : bool
        If False, each bin is combined with the same bin of the other beams.


    Outputs
    -------
    earth : np.array
        (ensemble, bin, component) velocities, components are east, north, vertical and error velocity.

    """
    velocity = np.asarray(velocity, dtype=float)
    pitch = np.atleast_1d(np.asarray(pitch, dtype=float))
    roll = np.atleast_1d(np.asarray(roll, dtype=float))
    heading = np.atleast_1d(np.asarray(heading, dtype=float))
    n_ens, n_bins, _ = np.shape(velocity)

    CP, SP, CR, SR, CH, SH = _attitude(pitch, roll, heading)
    J, valid = _remap_bins(CP, SP, CR, SR, n_bins, beam_angle, up, use_bin_remap)

    # Velocity of each beam at the remapped bin
    beam = np.take_along_axis(velocity, J, axis=1)
    valid = valid & np.all(np.isfinite(velocity), axis=-1) & np.all(np.isfinite(beam), axis=-1)

    X, Y, Z, E = _beams_to_XYZ(beam[..., 0], beam[..., 1], beam[..., 2], beam[..., 3], beam_angle, up, convex)
    terms = [x[:, None] for x in (CP, SP, CR, SR, CH, SH)]
    VE, VN, VU = _XYZ_to_ENU(X, Y, Z, *terms)

    earth = np.stack([VE, VN, VU, E], axis=-1)
    earth[~valid, :] = np.nan
    return earth


def rotate_to_earth(ds, options):
    """
    Rotates the velocities of an instrument dataset from beam to earth coordinates.
    Instruments already recording earth coordinates are returned unchanged.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset produced by ladcpmerge.records.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with velocity in east, north, vertical and error components and the coordinate_system attribute set to 'earth'.

    """
    if ds.attrs['coordinate_system'] != 'beam':
        plog('    Data are not in beam coordinates. Not rotating.')
        return ds

    plog('    Detected BEAM coordinates: rotating to EARTH coordinates')
    earth = beams_to_earth(
        ds['velocity'].values,
        ds['pitch'].values,
        ds['roll'].values,
        ds['heading'].values,
        ds.attrs['beam_angle'],
        ds.attrs['orientation'] == 'up',
        convex=options['convex_transducer'],
        use_bin_remap=options['use_bin_remapping'],
    )
    ds = ds.copy()
    ds['velocity'] = (['time', 'bin', 'beam'], earth)
    ds.attrs['coordinate_system'] = 'earth'
    return ds


def rotate_bottom_track(ds, options):
    """
    Rotates bottom track velocities from beam to earth coordinates. Bins are not remapped as bottom track
    velocities are a single range cell.


    Inputs
    ----------
    ds : xr.Dataset
        Instrument dataset produced by ladcpmerge.records, still holding its original coordinate_system attribute.
    options : dict
        Set of options for ladcpmerge, created by the ladcpmerge.tools.get_options() function.


    Outputs
    -------
    ds : xr.Dataset
        Same as input with bottom_velocity in east, north, vertical and error components.

    """
    if ds.attrs['coordinate_system'] != 'beam' or np.count_nonzero(np.isfinite(ds['bottom_velocity'].values)) == 0:
        return ds
    plog('    Detected BEAM bottom track coordinates, rotating to EARTH coordinates')
    earth = beams_to_earth(
        ds['bottom_velocity'].values[:, None, :],
        ds['pitch'].values,
        ds['roll'].values,
        ds['heading'].values,
        ds.attrs['beam_angle'],
        ds.attrs['orientation'] == 'up',
        convex=options['convex_transducer'],
        use_bin_remap=False,
    )
    ds = ds.copy()
    ds['bottom_velocity'] = (['time', 'beam'], earth[:, 0, :])
    return ds
