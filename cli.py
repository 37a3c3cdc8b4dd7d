import logging
import sys

import click

import simulator as sim
from tracefile import LETTERS, file_to_input


def describe(rec, outcome):
    tokens = [name for name in ('miss', 'eviction', 'hit') if outcome[name]]
    flag = LETTERS[sim.AccessKind(int(rec['kind']))]
    return f"{flag} {int(rec['addr']):x},{int(rec['size'])} " + ' '.join(tokens)


def _fail(ctx, message):
    click.echo(f"Error: {message}", err=True)
    ctx.exit(1)


@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.option('-s', 'set_bits', type=int, help='Number of set index bits (S = 2^s is the number of sets).')
@click.option('-E', 'lines', type=int, help='Number of lines per set (associativity).')
@click.option('-b', 'block_bits', type=int, help='Number of block offset bits (B = 2^b is the block size).')
@click.option('-t', 'trace_file', type=str, help='Trace file to replay.')
@click.option('-v', 'verbose', is_flag=True, help='Print the outcome of every trace record.')
@click.option('-d', '--debug', is_flag=True, help='Log every lookup; the replay loop is not compiled.')
@click.pass_context
def csim(ctx, set_bits, lines, block_bits, trace_file, verbose, debug):
    """Replay a memory trace against an LRU set-associative cache.

    The whole trace is read before replay starts, so a malformed line
    anywhere in it fails the run before any record is replayed or printed.

    \b
    Examples:
      csim -s 4 -E 1 -b 4 -t traces/trace01.dat
      csim -v -s 8 -E 2 -b 4 -t traces/trace01.dat
    """
    if debug:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s: %(message)s')

    try:
        config = sim.make_config(set_bits or 0, lines or 0, block_bits or 0)
    except sim.ConfigError as e:
        _fail(ctx, e)
    if trace_file is None:
        _fail(ctx, "no trace file given (-t).")

    try:
        records = file_to_input(trace_file)
    except sim.CacheSimError as e:
        _fail(ctx, e)

    mysim = sim.make_sim(debug=debug)
    try:
        result = mysim(config, records)
    except sim.InvalidAccessFlag as e:
        if verbose:
            for rec, outcome in zip(e.partial.records, e.partial.outcomes):
                click.echo(describe(rec, outcome))
        _fail(ctx, e)
    except sim.ConfigError as e:
        _fail(ctx, e)

    if verbose:
        for rec, outcome in zip(result.records, result.outcomes):
            click.echo(describe(rec, outcome))
    click.echo(result.summary())


def main(argv=None):
    try:
        return csim.main(args=argv, prog_name='csim', standalone_mode=False) or 0
    except click.ClickException as e:
        e.show()
        return 1
    except click.Abort:
        return 1


if __name__ == '__main__':
    sys.exit(main())
