"""
Preset configuration for the Lunar Enhancement Pipeline

This module contains the nested, immutable parameter groups that drive every
restoration stage, the Natural and Crisp base presets (still and video
variants), strength scaling, and the parameter modifiers used by guardrails.

Modifiers are pure ``PresetConfiguration -> PresetConfiguration`` functions
so that guardrails compose in a fixed order instead of rebuilding nested
records field by field at each call site.
"""

from dataclasses import dataclass, replace
from functools import reduce
from typing import Callable

from .enums import EnhancementPreset


@dataclass(frozen=True)
class ToneParameters:
    highlight_shoulder_start: float  # fraction of white point where the shoulder begins
    shoulder_strength: float
    midtone_contrast_gain: float
    midtone_pivot: float

    def scaled(self, factor: float) -> "ToneParameters":
        return replace(
            self,
            shoulder_strength=self.shoulder_strength * factor,
            midtone_contrast_gain=self.midtone_contrast_gain * factor,
        )


@dataclass(frozen=True)
class DenoiseParameters:
    luma_denoise_base: float
    luma_denoise_exponent: float  # strength = base * (1 - C) ** exponent
    chroma_denoise: float
    guided_filter_radius: int
    guided_filter_epsilon: float

    def scaled(self, factor: float) -> "DenoiseParameters":
        return replace(
            self,
            luma_denoise_base=self.luma_denoise_base * factor,
            chroma_denoise=self.chroma_denoise * factor,
        )


@dataclass(frozen=True)
class DeconvolutionParameters:
    enabled: bool
    min_circle_confidence: float
    min_median_c: float
    max_clipped_fraction: float
    iterations: int
    psf_sigma: float
    update_multiplier_base: float
    update_multiplier_c_scale: float  # multiplier = base + c_scale * C
    limb_ring_multiplier: float

    def scaled(self, factor: float) -> "DeconvolutionParameters":
        return replace(
            self,
            enabled=self.enabled and factor > 0.2,
            iterations=max(1, int(self.iterations * factor)),
            update_multiplier_c_scale=self.update_multiplier_c_scale * factor,
        )


@dataclass(frozen=True)
class WaveletParameters:
    fine_gain: float    # 1-2px features
    mid_gain: float     # 3-6px features
    coarse_gain: float  # 7-14px features
    c_exponent: float
    limb_multiplier: float
    min_snr: float
    max_luma: float
    max_luma_fade: float

    def scaled(self, factor: float) -> "WaveletParameters":
        return replace(
            self,
            fine_gain=self.fine_gain * factor,
            mid_gain=self.mid_gain * factor,
            coarse_gain=self.coarse_gain * factor,
        )


@dataclass(frozen=True)
class MicroContrastParameters:
    radius: int
    strength: float
    min_c: float
    limb_exclusion_pixels: int
    max_luma: float

    def scaled(self, factor: float) -> "MicroContrastParameters":
        return replace(self, strength=self.strength * factor)


@dataclass(frozen=True)
class HaloGuardParameters:
    overshoot_threshold: float  # max allowed overshoot as fraction of interior luma
    sample_angles: int
    fine_gain_reduction: float
    rl_iteration_reduction: int
    limb_ring_expansion: float  # pixels


@dataclass(frozen=True)
class VideoStackingParameters:
    """Reserved for frame stacking; not consumed by the still-image pipeline"""
    frame_selection_count: int
    sharpness_weight_exponent: float
    drizzle_enabled: bool
    drizzle_min_shift_variance: float
    sigma_clip_sigma: float
    post_stack_denoise_base: float


@dataclass(frozen=True)
class MaskParameters:
    moon_mask_feather: float
    limb_ring_width: float


@dataclass(frozen=True)
class PresetConfiguration:
    """Complete parameter set for one enhancement run"""
    tone: ToneParameters
    denoise: DenoiseParameters
    deconvolution: DeconvolutionParameters
    wavelet: WaveletParameters
    micro_contrast: MicroContrastParameters
    halo_guard: HaloGuardParameters
    video_stacking: VideoStackingParameters
    mask: MaskParameters

    def scaled(self, factor: float) -> "PresetConfiguration":
        """Scale gain-like fields; thresholds and geometry are left alone"""
        return replace(
            self,
            tone=self.tone.scaled(factor),
            denoise=self.denoise.scaled(factor),
            deconvolution=self.deconvolution.scaled(factor),
            wavelet=self.wavelet.scaled(factor),
            micro_contrast=self.micro_contrast.scaled(factor),
        )

    def with_strength(self, strength: float) -> "PresetConfiguration":
        """Apply a user strength in [0, 100]"""
        return self.scaled(max(0.0, min(1.0, strength / 100.0)))


_NATURAL_TONE = ToneParameters(
    highlight_shoulder_start=0.82,
    shoulder_strength=0.55,
    midtone_contrast_gain=0.10,
    midtone_pivot=0.55,
)

_NATURAL_WAVELET = WaveletParameters(
    fine_gain=0.18,
    mid_gain=0.12,
    coarse_gain=0.05,
    c_exponent=1.2,
    limb_multiplier=0.35,
    min_snr=3.0,
    max_luma=0.92,
    max_luma_fade=0.05,
)

_NATURAL_MICRO_CONTRAST = MicroContrastParameters(
    radius=18,
    strength=0.07,
    min_c=0.45,
    limb_exclusion_pixels=6,
    max_luma=0.90,
)

_NATURAL_HALO_GUARD = HaloGuardParameters(
    overshoot_threshold=0.015,
    sample_angles=36,
    fine_gain_reduction=0.25,
    rl_iteration_reduction=1,
    limb_ring_expansion=2.0,
)

_NATURAL_VIDEO_STACKING = VideoStackingParameters(
    frame_selection_count=12,
    sharpness_weight_exponent=1.2,
    drizzle_enabled=False,
    drizzle_min_shift_variance=0.15,
    sigma_clip_sigma=2.5,
    post_stack_denoise_base=0.18,
)

_CRISP_TONE = ToneParameters(
    highlight_shoulder_start=0.78,  # earlier shoulder to prevent limb glow
    shoulder_strength=0.65,
    midtone_contrast_gain=0.16,
    midtone_pivot=0.52,
)

_CRISP_MICRO_CONTRAST = MicroContrastParameters(
    radius=22,
    strength=0.11,
    min_c=0.55,
    limb_exclusion_pixels=10,
    max_luma=0.88,
)

_CRISP_HALO_GUARD = HaloGuardParameters(
    overshoot_threshold=0.022,
    sample_angles=36,
    fine_gain_reduction=0.35,
    rl_iteration_reduction=2,
    limb_ring_expansion=3.0,
)

_CRISP_VIDEO_STACKING = VideoStackingParameters(
    frame_selection_count=20,
    sharpness_weight_exponent=1.6,
    drizzle_enabled=True,
    drizzle_min_shift_variance=0.15,
    sigma_clip_sigma=2.5,
    post_stack_denoise_base=0.14,
)

_DEFAULT_MASK = MaskParameters(moon_mask_feather=3.0, limb_ring_width=9.0)


NATURAL_STILL = PresetConfiguration(
    tone=_NATURAL_TONE,
    denoise=DenoiseParameters(
        luma_denoise_base=0.35,
        luma_denoise_exponent=1.3,
        chroma_denoise=0.55,
        guided_filter_radius=3,
        guided_filter_epsilon=0.006,
    ),
    deconvolution=DeconvolutionParameters(
        enabled=True,
        min_circle_confidence=0.6,
        min_median_c=0.35,
        max_clipped_fraction=0.01,
        iterations=3,
        psf_sigma=0.8,
        update_multiplier_base=0.6,
        update_multiplier_c_scale=0.4,
        limb_ring_multiplier=0.35,
    ),
    wavelet=_NATURAL_WAVELET,
    micro_contrast=_NATURAL_MICRO_CONTRAST,
    halo_guard=_NATURAL_HALO_GUARD,
    video_stacking=_NATURAL_VIDEO_STACKING,
    mask=_DEFAULT_MASK,
)

# Stacked input is cleaner: less denoise, one more RL iteration
NATURAL_VIDEO = replace(
    NATURAL_STILL,
    denoise=replace(NATURAL_STILL.denoise, luma_denoise_base=0.18, chroma_denoise=0.45),
    deconvolution=replace(NATURAL_STILL.deconvolution, iterations=4),
)

CRISP_STILL = PresetConfiguration(
    tone=_CRISP_TONE,
    denoise=DenoiseParameters(
        luma_denoise_base=0.45,
        luma_denoise_exponent=1.1,
        chroma_denoise=0.65,
        guided_filter_radius=3,
        guided_filter_epsilon=0.008,
    ),
    deconvolution=DeconvolutionParameters(
        enabled=True,
        min_circle_confidence=0.7,
        min_median_c=0.40,
        max_clipped_fraction=0.003,
        iterations=6,
        psf_sigma=0.7,
        update_multiplier_base=0.5,
        update_multiplier_c_scale=0.5,
        limb_ring_multiplier=0.25,
    ),
    wavelet=WaveletParameters(
        fine_gain=0.32,
        mid_gain=0.22,
        coarse_gain=0.09,
        c_exponent=1.35,
        limb_multiplier=0.25,
        min_snr=4.0,
        max_luma=0.90,
        max_luma_fade=0.06,
    ),
    micro_contrast=_CRISP_MICRO_CONTRAST,
    halo_guard=_CRISP_HALO_GUARD,
    video_stacking=_CRISP_VIDEO_STACKING,
    mask=_DEFAULT_MASK,
)

CRISP_VIDEO = replace(
    CRISP_STILL,
    denoise=replace(CRISP_STILL.denoise, luma_denoise_base=0.14, chroma_denoise=0.55),
    deconvolution=replace(CRISP_STILL.deconvolution, iterations=7),
    wavelet=replace(CRISP_STILL.wavelet, fine_gain=0.29, mid_gain=0.20, coarse_gain=0.08),
)


def preset_for(preset: EnhancementPreset, is_video: bool = False) -> PresetConfiguration:
    """Base configuration for a named preset and source type"""
    if preset is EnhancementPreset.CRISP:
        return CRISP_VIDEO if is_video else CRISP_STILL
    return NATURAL_VIDEO if is_video else NATURAL_STILL


# ---------------------------------------------------------------------------
# Modifiers
# ---------------------------------------------------------------------------

Modifier = Callable[[PresetConfiguration], PresetConfiguration]


def compose(*modifiers: Modifier) -> Modifier:
    """Chain modifiers left to right"""
    return lambda config: reduce(lambda acc, modify: modify(acc), modifiers, config)


def disable_deconvolution(config: PresetConfiguration) -> PresetConfiguration:
    return replace(config, deconvolution=replace(config.deconvolution, enabled=False))


def reduce_deconvolution_iterations(amount: int) -> Modifier:
    """Drop RL iterations by ``amount``, disabling the stage once none remain"""
    def modify(config: PresetConfiguration) -> PresetConfiguration:
        params = config.deconvolution
        reduced = params.iterations - amount
        if reduced <= 0:
            return replace(config, deconvolution=replace(params, enabled=False))
        return replace(config, deconvolution=replace(params, iterations=reduced))
    return modify


def scale_fine_gain(factor: float) -> Modifier:
    def modify(config: PresetConfiguration) -> PresetConfiguration:
        return replace(config, wavelet=replace(config.wavelet, fine_gain=config.wavelet.fine_gain * factor))
    return modify


def clipped_highlight_guardrail(config: PresetConfiguration) -> PresetConfiguration:
    """Pre-reduce tone and fine wavelet gains and force RL off for clipped captures"""
    tone = replace(
        config.tone,
        shoulder_strength=config.tone.shoulder_strength * 0.7,
        midtone_contrast_gain=config.tone.midtone_contrast_gain * 0.7,
    )
    guarded = compose(scale_fine_gain(0.6), disable_deconvolution)(config)
    return replace(guarded, tone=tone)


def halo_mitigation(config: PresetConfiguration) -> PresetConfiguration:
    """Reduced fine gain and RL iterations for the single halo-mitigation replay"""
    halo = config.halo_guard
    mitigate = [scale_fine_gain(1.0 - halo.fine_gain_reduction)]
    if config.deconvolution.enabled:
        mitigate.append(reduce_deconvolution_iterations(halo.rl_iteration_reduction))
    return compose(*mitigate)(config)
