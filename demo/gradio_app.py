"""CHIP8-VM Interactive Demo.

A Gradio web interface for running and inspecting CHIP8-VM programs.

Usage:
    cd /path/to/chip8-vm
    python demo/gradio_app.py

Features:
    - Upload a .ch8 program image or pick a built-in example
    - Hold down any combination of the 16 keys
    - See the final display, registers and timers
    - Step-by-step execution trace with disassembly
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from chip8_vm import Chip8VM, VMError, disassemble


# =============================================================================
# Example Programs
# =============================================================================

# Program images as hex, one instruction per group
EXAMPLE_PROGRAMS = {
    "Digits 0-7": """
        6000 6100 6201
        F029 D125 7105 7001
        3008 1206
        1212""",

    "BCD of 234": """
        6AEA A300 FA33 F265
        6300 6400
        F029 D345 7305
        F129 D345 7305
        F229 D345
        121C""",

    "Wait for key": """
        F00A 00E0 F029
        6100 6200 D125
        1200""",

    "Beep": """
        6020 F018
        1204""",
}

KEY_LABELS = [f"{i:X}" for i in range(16)]


# =============================================================================
# Execution Functions
# =============================================================================

def run_program(
    example: str,
    rom_file,
    cycles: int,
    cycles_per_frame: int,
    held_keys: list,
    seed: float,
) -> tuple:
    """Execute a program image and return results.

    Args:
        example: Name of a built-in example (used when no file is uploaded)
        rom_file: Uploaded program image bytes, or None
        cycles: Instructions to execute
        cycles_per_frame: Instructions per timer tick
        held_keys: Hex labels of keys held down
        seed: Seed for the RND instruction

    Returns:
        Tuple of (display_text, summary_text, trace_text)
    """
    if rom_file:
        image = bytes(rom_file)
    elif example in EXAMPLE_PROGRAMS:
        image = bytes.fromhex("".join(EXAMPLE_PROGRAMS[example].split()))
    else:
        return "", "Error: No program provided", ""

    vm = Chip8VM(seed=int(seed), trace=True, trace_depth=200)
    try:
        vm.load(image)
    except VMError as e:
        return "", f"Load error: {e}", ""

    for label in held_keys or []:
        vm.set_key(int(label, 16), True)

    error_msg = None
    tone_heard = False
    frame = max(1, int(cycles_per_frame))
    try:
        for cycle in range(1, int(cycles) + 1):
            vm.tick()
            tone_heard = tone_heard or vm.sound_active
            if cycle % frame == 0:
                vm.tick_timers()
    except VMError as e:
        error_msg = str(e)

    display_text = vm.render_display(lit="█", unlit=" ")

    # Format summary
    summary = vm.get_summary()
    summary_lines = [
        "EXECUTION SUMMARY",
        "=" * 40,
        f"Program: {len(image)} bytes",
        f"Cycles: {summary['cycles']}",
        f"PC: 0x{summary['pc']:03X}   I: 0x{summary['index_register']:03X}",
        f"Stack depth: {summary['stack_depth']}",
        f"Timers: DT={summary['delay_timer']} ST={summary['sound_timer']}",
        f"Tone played: {'Yes' if tone_heard else 'No'}",
        f"Lit pixels: {summary['lit_pixels']}",
    ]
    if error_msg:
        summary_lines.append(f"\nFault: {error_msg}")

    summary_lines.append("")
    summary_lines.append("REGISTERS")
    summary_lines.append("-" * 40)
    regs = summary["registers"]
    for name in sorted(regs.keys()):
        marker = " *" if regs[name] != 0 else ""
        summary_lines.append(f"  {name}: 0x{regs[name]:02X} ({regs[name]:>3}){marker}")

    summary_text = "\n".join(summary_lines)

    # Format trace
    trace = vm.get_trace()
    trace_lines = [
        "EXECUTION TRACE (most recent)",
        "=" * 60,
    ]
    for entry in trace[-100:]:
        text = disassemble(entry.instruction) if entry.instruction is not None else "<fetch failed>"
        line = f"[{entry.cycle:>5}] 0x{entry.address:03X}  {text}"
        if entry.error:
            line += f"   !! {entry.error}"
        trace_lines.append(line)

    trace_text = "\n".join(trace_lines)

    return display_text, summary_text, trace_text


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="CHIP8-VM Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # CHIP8-VM: CHIP-8 Virtual CPU

        Load a program image, hold some keys, run a fixed number of
        instructions and inspect the resulting machine state.

        **Pipeline**: `fetch -> decode -> key -> verified_execute -> state`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_PROGRAMS.keys()),
                    value="Digits 0-7",
                    label="Built-in Example"
                )

                rom_input = gr.File(
                    label="Or upload a .ch8 image",
                    type="binary"
                )

                gr.Markdown("### Settings")

                cycles = gr.Slider(
                    minimum=1,
                    maximum=20000,
                    value=500,
                    step=1,
                    label="Instructions"
                )
                cycles_per_frame = gr.Slider(
                    minimum=1,
                    maximum=50,
                    value=10,
                    step=1,
                    label="Instructions per Timer Tick"
                )
                held_keys = gr.CheckboxGroup(
                    choices=KEY_LABELS,
                    label="Held Keys"
                )
                seed = gr.Number(value=0, label="RND Seed", precision=0)

                run_button = gr.Button("Run Program", variant="primary")

            with gr.Column(scale=3):
                display_output = gr.Textbox(
                    label="Display (64x32)",
                    lines=32,
                    max_lines=32,
                    interactive=False
                )
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=20,
                        interactive=False
                    )
                    trace_output = gr.Textbox(
                        label="Execution Trace",
                        lines=20,
                        interactive=False
                    )

        with gr.Accordion("ISA Reference", open=False):
            gr.Markdown("""
            | Opcode | Mnemonic | Effect |
            |--------|----------|--------|
            | `00E0` | `CLS` | Clear display |
            | `00EE` | `RET` | Return from subroutine |
            | `1nnn` | `JP nnn` | Jump |
            | `2nnn` | `CALL nnn` | Call subroutine |
            | `3xnn` / `4xnn` | `SE` / `SNE Vx, nn` | Skip if equal / not equal |
            | `5xy0` / `9xy0` | `SE` / `SNE Vx, Vy` | Skip if registers equal / differ |
            | `6xnn` / `7xnn` | `LD` / `ADD Vx, nn` | Load / add immediate |
            | `8xy0`-`8xyE` | `LD OR AND XOR ADD SUB SHR SUBN SHL` | Register ALU, VF = flag |
            | `Annn` | `LD I, nnn` | Set index |
            | `Bnnn` | `JP V0, nnn` | Jump to V0 + nnn |
            | `Cxnn` | `RND Vx, nn` | Random AND nn |
            | `Dxyn` | `DRW Vx, Vy, n` | XOR sprite, VF = collision |
            | `Ex9E` / `ExA1` | `SKP` / `SKNP Vx` | Skip on key state |
            | `Fx07` `Fx0A` `Fx15` `Fx18` | `LD Vx, DT` / `K`, `LD DT` / `ST, Vx` | Timers and key wait |
            | `Fx1E` `Fx29` `Fx33` `Fx55` `Fx65` | `ADD I`, `LD F`, `LD B`, `LD [I]`, `LD Vx, [I]` | Index and memory |
            """)

        run_button.click(
            fn=run_program,
            inputs=[example_dropdown, rom_input, cycles, cycles_per_frame, held_keys, seed],
            outputs=[display_output, summary_output, trace_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
