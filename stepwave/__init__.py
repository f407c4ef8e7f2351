"""
Stepwave - a live-coding drum machine engine for Python.

Type a pattern, hear it loop, change it while it plays. Pattern text is
parsed into an immutable step grid, a transport clock ticks through the
grid sixteen steps per cycle, and each due step triggers a sample on the
audio output with sample-accurate start times.

What it does:

- **Live swap.** Evaluating new text while playing replaces the pattern on
  the next step. The beat never stops or jumps.
- **Forgiving parser, strict validator.** The parser plays whatever it can
  recognise; the validator reports unmatched quotes, unbalanced brackets,
  unknown samples and unknown functions, and the engine can refuse
  invalid text (``strict``) or play it anyway.
- **Always makes sound.** Samples load from files or URLs; anything that
  fails to load is replaced by a deterministic synthetic drum sound.
- **Effects.** Low/high-pass filters, reverb and delay per pattern.
- **Outputs.** Realtime audio (sounddevice), MIDI drum notes (mido), or
  offline rendering to a sound file (soundfile).
- **Remote control.** A WebSocket server for editor code updates and an
  OSC server for play/stop/volume/tempo and step broadcasts.

Pattern text:

    stack("bd ~ ~ ~", "~ ~ sd ~", "hh hh hh hh").s(0.7).lpf(2000).bpm(128)

Minimal example:

    ```python
    import asyncio
    import stepwave

    async def main () -> None:
        engine = stepwave.Engine()
        await engine.initialize()
        await engine.evaluate('stack("bd ~ ~ ~", "~ ~ sd ~", "hh hh hh hh").s(0.7)')
        await engine.play()
        await asyncio.sleep(8)
        await engine.dispose()

    asyncio.run(main())
    ```

Package-level exports: ``Engine``, ``EngineConfig``, ``Pattern``, ``parse``, ``validate``, ``load_config``.
"""

import stepwave.config
import stepwave.engine
import stepwave.parser
import stepwave.pattern
import stepwave.validator


Engine = stepwave.engine.Engine
EngineConfig = stepwave.config.EngineConfig
Pattern = stepwave.pattern.Pattern
parse = stepwave.parser.parse
validate = stepwave.validator.validate
load_config = stepwave.config.load_config
